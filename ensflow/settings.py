import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_KEY: str = os.getenv("API_KEY", "")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "ensflow")

    # Flow store
    FLOW_TTL_SEC: int = int(os.getenv("FLOW_TTL_SEC", "86400"))
    # Empty secret disables the integrity envelope signature (dev only)
    FLOW_INTEGRITY_SECRET: str = os.getenv("FLOW_INTEGRITY_SECRET", "")
    INTERACTION_TTL_SEC: int = int(os.getenv("INTERACTION_TTL_SEC", "86400"))

    # Chains
    PRIMARY_CHAIN_ID: int = int(os.getenv("PRIMARY_CHAIN_ID", "1"))
    BRIDGE_SOURCE_CHAIN_ID: int = int(os.getenv("BRIDGE_SOURCE_CHAIN_ID", "8453"))
    MAINNET_RPC_URL: str = os.getenv("MAINNET_RPC_URL", "https://eth.llamarpc.com")
    BASE_RPC_URL: str = os.getenv("BASE_RPC_URL", "https://mainnet.base.org")
    RPC_TIMEOUT_SEC: int = int(os.getenv("RPC_TIMEOUT_SEC", "10"))

    # Name-registry read/encode service
    REGISTRY_API_URL: str = os.getenv("REGISTRY_API_URL", "http://localhost:8081")
    REGISTRY_TIMEOUT_SEC: int = int(os.getenv("REGISTRY_TIMEOUT_SEC", "10"))

    # Bridge provider (Across)
    BRIDGE_API_URL: str = os.getenv("BRIDGE_API_URL", "https://app.across.to/api")
    BRIDGE_SPOKE_POOL: str = os.getenv("BRIDGE_SPOKE_POOL", "0x09aea4b2242abC8bb4BB78D537A67a245A7bEC64")
    # WETH on Base; the provider unwraps to native ETH on the destination
    BRIDGE_INPUT_TOKEN: str = os.getenv("BRIDGE_INPUT_TOKEN", "0x4200000000000000000000000000000000000006")
    BRIDGE_TIMEOUT_SEC: int = int(os.getenv("BRIDGE_TIMEOUT_SEC", "15"))

    # Funding knobs (percent)
    BRIDGE_BUFFER_PCT: int = int(os.getenv("BRIDGE_BUFFER_PCT", "5"))
    RENEW_BRIDGE_BUFFER_PCT: int = int(os.getenv("RENEW_BRIDGE_BUFFER_PCT", "10"))
    BRIDGE_SAFETY_BUFFER_PCT: int = int(os.getenv("BRIDGE_SAFETY_BUFFER_PCT", "10"))
    BRIDGE_MIN_AMOUNT_WEI: int = int(os.getenv("BRIDGE_MIN_AMOUNT_WEI", str(10**15)))
    BRIDGE_GAS_ESTIMATE_WEI: int = int(os.getenv("BRIDGE_GAS_ESTIMATE_WEI", str(10**15)))

    # Bridge completion polling
    BRIDGE_POLL_INTERVAL_SEC: int = int(os.getenv("BRIDGE_POLL_INTERVAL_SEC", "5"))
    BRIDGE_MAX_WAIT_SEC: int = int(os.getenv("BRIDGE_MAX_WAIT_SEC", "300"))
    BALANCE_POLL_INTERVAL_SEC: int = int(os.getenv("BALANCE_POLL_INTERVAL_SEC", "10"))
    BALANCE_POLL_MAX_WAIT_SEC: int = int(os.getenv("BALANCE_POLL_MAX_WAIT_SEC", "120"))
    BALANCE_DELTA_THRESHOLD_PCT: int = int(os.getenv("BALANCE_DELTA_THRESHOLD_PCT", "80"))

    # Commit/reveal timing (registry enforces 60s minimum age, 24h maximum)
    COMMIT_WAIT_SEC: int = int(os.getenv("COMMIT_WAIT_SEC", "65"))
    COMMIT_RECHECK_SEC: int = int(os.getenv("COMMIT_RECHECK_SEC", "15"))
    COMMIT_MAX_AGE_SEC: int = int(os.getenv("COMMIT_MAX_AGE_SEC", "86400"))

    MIN_DURATION_YEARS: int = int(os.getenv("MIN_DURATION_YEARS", "1"))
    MAX_DURATION_YEARS: int = int(os.getenv("MAX_DURATION_YEARS", "10"))

    # Messaging transport (message + interaction request sink)
    TRANSPORT_URL: str = os.getenv("TRANSPORT_URL", "")
    TRANSPORT_TIMEOUT_SEC: int = int(os.getenv("TRANSPORT_TIMEOUT_SEC", "5"))
    TRANSPORT_API_KEY: str = os.getenv("TRANSPORT_API_KEY", "")

    # Security & privacy
    ENABLE_ADDRESS_REDACTION: bool = os.getenv("ENABLE_ADDRESS_REDACTION", "false").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")

settings = Settings()
