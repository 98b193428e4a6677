from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Node Manager"
    DATABASE_URL: str = "sqlite:///./node_manager.db"

    # generated chain trees; deleted nodes are moved to NODES_ROOT_TMP, never removed
    NODES_ROOT: str = "./NODES_ROOT"
    NODES_ROOT_TMP: str = "./NODES_ROOT_TMP"

    BUILD_CHAIN_SHELL: str = "./scripts/build_chain.sh"
    GEN_AGENCY_CERT_SHELL: str = "./scripts/gen_agency_cert.sh"
    GEN_NODE_CERT_SHELL: str = "./scripts/gen_node_cert.sh"
    BUILD_CHAIN_TIMEOUT: float = 300.0

    SSH_USER: str = "root"
    SSH_PORT: int = 22
    SSH_CONNECT_TIMEOUT: int = 10
    SSH_COMMAND_TIMEOUT: float = 120.0

    # node ports are base + index of the node on its host
    DEFAULT_FRONT_PORT: int = 5002
    DEFAULT_P2P_PORT: int = 30300
    DEFAULT_CHANNEL_PORT: int = 20200
    DEFAULT_JSONRPC_PORT: int = 8545
    MAX_NODES_PER_REQUEST: int = 200

    IMAGE_REPOSITORY: str = "fiscoorg/fisco-webase"
    RESTART_WORKERS: int = 4
    RESTART_MAX_ATTEMPTS: int = 3
    FRONT_HEALTH_PATH: str = "/WeBASE-Front/"
    FRONT_HEALTH_TIMEOUT: float = 5.0

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
