import os


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def llm_provider() -> str:
    return (os.getenv("LLM_PROVIDER", "openai") or "openai").strip().lower()


def chunk_size() -> int:
    return env_int("CHUNK_SIZE", 1000)


def chunk_overlap() -> int:
    return env_int("CHUNK_OVERLAP", 100)


def history_limit() -> int:
    return max(1, env_int("HISTORY_LIMIT", 20))


def retrieval_top_k() -> int:
    return max(1, env_int("RETRIEVAL_TOP_K", 5))
