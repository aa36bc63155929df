"""Config file."""
from pathlib import Path
from urllib.parse import quote_plus

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PUBLIC_FALLBACK_RPC_URL = "https://eth.llamarpc.com"


class Settings(BaseSettings):
    """Application settings."""

    # PROJECT
    project_name: str = Field("chain-indexer", alias="PROJECT_NAME")

    # DATABASE
    postgres_user: str = Field("postgres", alias="POSTGRES_USER")
    postgres_password: SecretStr = Field(SecretStr("postgres"), alias="POSTGRES_PASSWORD")
    postgres_server: str = Field("localhost", alias="POSTGRES_SERVER")
    postgres_port: int = Field(5432, alias="POSTGRES_PORT")
    postgres_db: str = Field("chain_indexer", alias="POSTGRES_DB")
    database_url: str | None = Field(None, alias="DATABASE_URL")
    sync_database_url: str | None = Field(None, alias="SYNC_DATABASE_URL")
    persistence_backend: str = Field("sqlalchemy", alias="PERSISTENCE_BACKEND")

    # CHAIN RPC
    rpc_url_override: str | None = Field(None, alias="RPC_URL")
    infura_project_id: SecretStr | None = Field(None, alias="INFURA_PROJECT_ID")
    alchemy_api_key: SecretStr | None = Field(None, alias="ALCHEMY_API_KEY")
    network: str = Field("mainnet", alias="NETWORK")
    rpc_timeout: float = Field(30.0, alias="RPC_TIMEOUT", gt=0)

    # INDEXING
    start_block: int = Field(0, alias="START_BLOCK", ge=0)
    batch_size: int = Field(100, alias="BATCH_SIZE", gt=0)
    concurrency: int = Field(1, alias="CONCURRENCY", gt=0)
    retry_attempts: int = Field(3, alias="RETRY_ATTEMPTS", gt=0)
    retry_delay_ms: int = Field(1000, alias="RETRY_DELAY", ge=0)
    abi_dir: Path | None = Field(None, alias="ABI_DIR")
    erc20_tokens: str = Field("", alias="ERC20_TOKENS")

    # SCHEDULER
    scheduler_interval: float = Field(60.0, alias="SCHEDULER_INTERVAL", gt=0)
    scheduler_cooldown: float = Field(3600.0, alias="SCHEDULER_COOLDOWN", ge=0)
    scheduler_retry_errored: bool = Field(False, alias="SCHEDULER_RETRY_ERRORED")

    @model_validator(mode="after")
    def assemble_db_urls(self) -> "Settings":
        user = quote_plus(self.postgres_user)
        password = quote_plus(self.postgres_password.get_secret_value())
        host = self.postgres_server
        port = self.postgres_port
        db = self.postgres_db

        if not self.database_url:
            self.database_url = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db}"

        if not self.sync_database_url:
            self.sync_database_url = f"postgresql://{user}:{password}@{host}:{port}/{db}"

        return self

    @property
    def erc20_token_addresses(self) -> list[str]:
        return [a.strip().lower() for a in self.erc20_tokens.split(",") if a.strip()]

    @property
    def retry_delay(self) -> float:
        """Initial retry delay in seconds."""
        return self.retry_delay_ms / 1000

    def rpc_url(self, network: str | None = None) -> str:
        """
        Resolve the JSON-RPC endpoint for a network.

        Precedence: explicit RPC_URL, Infura, Alchemy, then the public
        non-authenticated fallback (mainnet only).
        """
        if self.rpc_url_override:
            return self.rpc_url_override

        network = (network or self.network).lower()

        if self.infura_project_id is not None and network in ("mainnet", "sepolia", "polygon-mainnet"):
            return f"https://{network}.infura.io/v3/{self.infura_project_id.get_secret_value()}"

        if self.alchemy_api_key is not None:
            prefix = {"mainnet": "eth-mainnet", "sepolia": "eth-sepolia", "polygon": "polygon-mainnet"}.get(
                network, f"eth-{network}"
            )
            return f"https://{prefix}.g.alchemy.com/v2/{self.alchemy_api_key.get_secret_value()}"

        if network == "polygon":
            return "https://polygon-rpc.com"

        return _PUBLIC_FALLBACK_RPC_URL

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings: Settings = Settings()
