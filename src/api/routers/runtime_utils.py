import os


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def normalize_backend_init_error(
    *, detail: str, passthrough_details: set[str], fallback_detail: str
) -> str:
    if detail in passthrough_details:
        return detail
    return fallback_detail
