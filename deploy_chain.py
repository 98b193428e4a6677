import argparse
import sys
from typing import List

import requests


def check_manager_health(backend_url: str, timeout: float = 3.0) -> None:
    """
    Call GET {backend_url}/health and fail if it's not OK.
    """
    health_url = f"{backend_url.rstrip('/')}/health"
    try:
        resp = requests.get(health_url, timeout=timeout)
    except requests.RequestException as e:
        print(f"[ERROR] Could not reach node manager at {health_url}: {e}", file=sys.stderr)
        sys.exit(1)

    if resp.status_code != 200:
        print(f"[ERROR] Node manager health check failed ({resp.status_code}): {resp.text}", file=sys.stderr)
        sys.exit(1)

    print(f"[OK] Node manager at {backend_url} is healthy.")


def read_ip_conf(path: str) -> List[str]:
    """
    One topology line per row, e.g. 10.0.0.1:agencyA:2:{1,2}. Lines starting with # are skipped.
    """
    with open(path, encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip() and not line.lstrip().startswith("#")]


def deploy_chain(
    backend_url: str,
    chain_name: str,
    ip_conf: List[str],
    tag_id: int,
    root_dir: str,
    webase_sign_addr: str,
    timeout: float = 600.0,
) -> None:
    """
    POST /deploy/init to build and register a chain.
    """
    url = f"{backend_url.rstrip('/')}/deploy/init"
    payload = {
        "chain_name": chain_name,
        "ip_conf": ip_conf,
        "tag_id": tag_id,
        "root_dir_on_host": root_dir,
        "webase_sign_addr": webase_sign_addr,
    }

    resp = requests.post(url, json=payload, timeout=timeout)
    body = resp.json() if resp.headers.get("content-type", "").startswith("application/json") else {}
    if resp.status_code != 200 or body.get("code") != 0:
        print(
            f"[ERROR] Failed to deploy chain ({resp.status_code}, code={body.get('code')}): "
            f"{body.get('message') or resp.text}",
            file=sys.stderr,
        )
        if body.get("data"):
            print(body["data"], file=sys.stderr)
        sys.exit(1)

    print(f"[OK] Deployed chain '{chain_name}' on {len(ip_conf)} topology line(s)")
    print("Response:", body.get("message"))


def main():
    parser = argparse.ArgumentParser(description="Deploy a chain through the node manager.")
    parser.add_argument(
        "--backend-url",
        default="http://localhost:8000",
        help="Base URL of the node manager API (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--chain-name",
        required=True,
        help="Name of the new chain.",
    )
    parser.add_argument(
        "--ip-conf",
        required=True,
        help="File with one topology line per row (ip:agency:count:{groups}).",
    )
    parser.add_argument(
        "--tag-id",
        type=int,
        required=True,
        help="Id of the image tag to deploy.",
    )
    parser.add_argument(
        "--root-dir",
        default="/opt/fisco",
        help="Root directory of the chain on every host (default: /opt/fisco).",
    )
    parser.add_argument(
        "--sign-addr",
        default="127.0.0.1:5004",
        help="Address of the signing service written into each front's config.",
    )

    args = parser.parse_args()

    # 1) Check that the node manager is reachable and healthy
    check_manager_health(args.backend_url)

    # 2) Read the topology
    ip_conf = read_ip_conf(args.ip_conf)
    if not ip_conf:
        print(f"[ERROR] No topology line in {args.ip_conf}", file=sys.stderr)
        sys.exit(1)

    # 3) Deploy
    deploy_chain(
        backend_url=args.backend_url,
        chain_name=args.chain_name,
        ip_conf=ip_conf,
        tag_id=args.tag_id,
        root_dir=args.root_dir,
        webase_sign_addr=args.sign_addr,
    )


if __name__ == "__main__":
    main()


#Script run command
# python deploy_chain.py \
#   --backend-url http://localhost:8000 \
#   --chain-name chain1 \
#   --ip-conf ./ipconf.txt \
#   --tag-id 1
