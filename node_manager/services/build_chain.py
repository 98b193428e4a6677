from pathlib import Path
from typing import List, Optional

import structlog

from node_manager.core.config import Settings, settings as default_settings
from node_manager.core.status import EncryptType
from node_manager.services.paths import PathService
from node_manager.services.shell import ExecuteResult, run_command
from node_manager.services.topology import ConfigLine

logger = structlog.get_logger(__name__)


class ChainBootstrapTool:
    """
    Runs the chain bootstrap scripts that produce key material and base node config:
      - build_chain.sh: a whole chain from an ip config file
      - gen_agency_cert.sh: an agency cert dir signed by the chain ca
      - gen_node_cert.sh: one node's keys under an agency
    """

    def __init__(
        self,
        paths: PathService,
        build_chain_shell: str,
        gen_agency_cert_shell: str,
        gen_node_cert_shell: str,
        timeout: float = 300.0,
    ):
        self.paths = paths
        self.build_chain_shell = build_chain_shell
        self.gen_agency_cert_shell = gen_agency_cert_shell
        self.gen_node_cert_shell = gen_node_cert_shell
        self.timeout = timeout

    @classmethod
    def from_settings(cls, paths: PathService, settings: Optional[Settings] = None) -> "ChainBootstrapTool":
        settings = settings or default_settings
        return cls(
            paths,
            build_chain_shell=settings.BUILD_CHAIN_SHELL,
            gen_agency_cert_shell=settings.GEN_AGENCY_CERT_SHELL,
            gen_node_cert_shell=settings.GEN_NODE_CERT_SHELL,
            timeout=settings.BUILD_CHAIN_TIMEOUT,
        )

    @staticmethod
    def _gm_flag(encrypt_type: EncryptType) -> List[str]:
        return ["-g"] if encrypt_type == EncryptType.SM2 else []

    def build_chain(
        self,
        encrypt_type: EncryptType,
        config_lines: List[ConfigLine],
        chain_name: str,
    ) -> ExecuteResult:
        ip_conf = self.paths.ip_conf_file(chain_name)
        ip_conf.parent.mkdir(parents=True, exist_ok=True)
        ip_conf.write_text(
            "\n".join(line.to_build_chain_line() for line in config_lines) + "\n",
            encoding="utf-8",
        )

        args = [
            "bash", self.build_chain_shell,
            "-f", str(ip_conf),
            "-o", str(self.paths.chain_root(chain_name)),
            *self._gm_flag(encrypt_type),
        ]
        logger.info("exec build chain", chain_name=chain_name, encrypt_type=encrypt_type.name)
        result = run_command(args, timeout=self.timeout)
        if result.failed:
            logger.error("build chain failed", chain_name=chain_name, output=result.execute_out)
        return result

    def gen_agency_cert(self, encrypt_type: EncryptType, chain_name: str, agency_name: str) -> ExecuteResult:
        args = [
            "bash", self.gen_agency_cert_shell,
            "-c", str(self.paths.chain_root(chain_name) / "cert"),
            "-a", agency_name,
            *self._gm_flag(encrypt_type),
        ]
        return run_command(args, timeout=self.timeout)

    def gen_node_cert(
        self,
        encrypt_type: EncryptType,
        chain_name: str,
        agency_name: str,
        node_path: Path,
    ) -> ExecuteResult:
        args = [
            "bash", self.gen_node_cert_shell,
            "-c", str(self.paths.agency_cert_dir(chain_name, agency_name)),
            "-o", str(node_path),
            *self._gm_flag(encrypt_type),
        ]
        return run_command(args, timeout=self.timeout)
