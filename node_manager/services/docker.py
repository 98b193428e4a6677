import re
import shlex

from node_manager.models.chain import Chain
from node_manager.models.front import Front
from node_manager.services.paths import PathService


def container_name(root_dir: str, chain_name: str, host_index: int) -> str:
    """Container name for node[host_index] of a chain, e.g. opt-fisco-chain1-node0."""
    safe_root = re.sub(r"[^a-zA-Z0-9_-]", "-", root_dir.strip("/")).strip("-")
    safe_chain = re.sub(r"[^a-zA-Z0-9_-]", "-", chain_name)
    prefix = f"{safe_root}-" if safe_root else ""
    return f"{prefix}{safe_chain}-node{host_index}"


def start_command(chain: Chain, front: Front, image_repository: str) -> str:
    """Remove any old container for the front and start a new one on the chain's image."""
    node_dir = PathService.remote_node_root(chain.root_dir, chain.chain_name, front.host_index)
    name = shlex.quote(front.container_name)
    image = shlex.quote(f"{image_repository}:{chain.version}")
    return (
        f"docker rm -f {name} >/dev/null 2>&1; "
        f"docker run -d --restart=always --net=host --name {name} "
        f"-v {shlex.quote(str(node_dir))}:/data "
        f"-v {shlex.quote(str(node_dir / 'application.yml'))}:/front/conf/application.yml "
        f"{image}"
    )


def stop_command(front: Front) -> str:
    return f"docker stop {shlex.quote(front.container_name)}"
