from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_SUMMARIZER_URL = "https://api.novita.ai/openai/v1/chat/completions"
DEFAULT_SUMMARIZER_MODEL = "deepseek/deepseek-v3.2"
DEFAULT_GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass(slots=True)
class Settings:
    root_dir: Path
    data_dir: Path
    db_path: Path
    logs_dir: Path
    exports_dir: Path
    google_client_secret_path: Path
    google_client_id: str | None
    google_client_secret: str | None
    google_token_uri: str = DEFAULT_GOOGLE_TOKEN_URI
    summarizer_url: str = DEFAULT_SUMMARIZER_URL
    summarizer_api_key: str | None = None
    summarizer_model: str = DEFAULT_SUMMARIZER_MODEL
    summarizer_timeout_sec: float = 30.0
    summarizer_max_tokens: int = 512
    sync_batch_size: int = 50
    token_refresh_margin_sec: int = 300
    session_ttl_hours: int = 24

    @classmethod
    def load(cls, base_dir: Path | None = None) -> Settings:
        load_dotenv(override=False)

        root_env = os.getenv("CRMSYNC_HOME")
        root_dir = Path(root_env).expanduser().resolve() if root_env else (base_dir or Path.cwd()).resolve()

        data_dir = Path(os.getenv("CRMSYNC_DATA_DIR", root_dir / "data")).expanduser().resolve()
        db_path = Path(os.getenv("CRMSYNC_DB_PATH", data_dir / "crmsync.sqlite3")).expanduser().resolve()
        logs_dir = Path(os.getenv("CRMSYNC_LOG_DIR", root_dir / "logs")).expanduser().resolve()
        exports_dir = Path(os.getenv("CRMSYNC_EXPORT_DIR", root_dir / "exports")).expanduser().resolve()

        google_client_secret_path = Path(
            os.getenv("GOOGLE_OAUTH_CLIENT_SECRET_PATH", root_dir / "secrets" / "google_client_secret.json")
        ).expanduser().resolve()

        # NOVITA_API_KEY wins; OPENAI_API_KEY is accepted for any OpenAI-compatible endpoint
        summarizer_api_key = os.getenv("NOVITA_API_KEY") or os.getenv("OPENAI_API_KEY") or None

        return cls(
            root_dir=root_dir,
            data_dir=data_dir,
            db_path=db_path,
            logs_dir=logs_dir,
            exports_dir=exports_dir,
            google_client_secret_path=google_client_secret_path,
            google_client_id=os.getenv("GOOGLE_CLIENT_ID") or None,
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET") or None,
            google_token_uri=os.getenv("GOOGLE_TOKEN_URI", DEFAULT_GOOGLE_TOKEN_URI),
            summarizer_url=os.getenv("CRMSYNC_SUMMARIZER_URL", DEFAULT_SUMMARIZER_URL),
            summarizer_api_key=summarizer_api_key,
            summarizer_model=os.getenv("NOVITA_MODEL", DEFAULT_SUMMARIZER_MODEL),
            summarizer_timeout_sec=float(os.getenv("CRMSYNC_SUMMARIZER_TIMEOUT_SEC", "30")),
            summarizer_max_tokens=int(os.getenv("CRMSYNC_SUMMARIZER_MAX_TOKENS", "512")),
            sync_batch_size=int(os.getenv("CRMSYNC_SYNC_BATCH_SIZE", "50")),
            token_refresh_margin_sec=int(os.getenv("CRMSYNC_TOKEN_REFRESH_MARGIN_SEC", "300")),
            session_ttl_hours=int(os.getenv("CRMSYNC_SESSION_TTL_HOURS", "24")),
        )

    def ensure_directories(self) -> None:
        for path in [self.root_dir, self.data_dir, self.logs_dir, self.exports_dir]:
            path.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
