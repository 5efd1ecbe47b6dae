from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./fora.db"

    # Public host used to build deep links and local blob URLs
    public_base_url: str = "http://localhost:3000"

    # Local blob backend root. Used when no Vercel Blob token is configured.
    storage_path: str = "./storage"

    # Vercel Blob (temporary asset staging)
    blob_read_write_token: str = ""
    blob_api_url: str = "https://blob.vercel-storage.com"

    # Neynar (push notifications + webhooks)
    neynar_api_key: str = ""
    neynar_api_url: str = "https://api.neynar.com/v2/farcaster"
    mini_app_fid: int = 0
    neynar_webhook_secret: str = ""
    # 0 disables the author filter on inbound casts
    webhook_monitor_fid: int = 0

    # Bearer secret for the scheduler-triggered endpoints
    cron_job_secret: str = ""

    # Worker
    worker_enabled: bool = True
    worker_poll_interval_seconds: float = 15.0
    render_timeout_seconds: float = 120.0
    upload_timeout_seconds: float = 60.0
    download_timeout_seconds: float = 30.0
    render_duration_seconds: int = 4
    work_dir: str = "./.tmp"
    ffmpeg_bin: str = "ffmpeg"
    fallback_video_path: str = "./public/mock-video.mp4"

    # Archival
    archive_after_hours: float = 48.0
    # Advisory only: no sweep trigger reads this yet
    storage_limit_bytes: int = 838860800

    # Intake
    min_prompt_length: int = 10

    log_level: str = "INFO"

    model_config = {"env_file": ".env"}


settings = Settings()
