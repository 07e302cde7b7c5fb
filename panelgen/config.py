# panelgen/config.py
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List

def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}

def _env_csv(name: str, default: str = "*") -> List[str]:
    raw = os.getenv(name, default)
    return [x.strip() for x in raw.split(",") if x.strip()]

def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)

@dataclass(frozen=True)
class Config:
    # Image generation provider (KIE-style jobs API)
    kie_api_key: str
    kie_base_url: str
    image_model: str
    aspect_ratio: str
    resolution: str
    output_format: str
    negative_prompt: str
    poll_interval_seconds: float
    job_timeout_seconds: float
    http_timeout_seconds: float
    fetch_retries: int
    max_reference_images: int
    max_references_per_character: int
    # OpenAI (prompt synthesis)
    openai_api_key: str
    openai_text_model: str
    prompt_synthesizer: str     # "openai" | "template"
    # Image hosting for reference uploads
    image_host: str             # "gcs" | "imgbb"
    gcs_bucket: str
    signed_url_ttl: int
    imgbb_api_key: str
    # Characters / references
    reference_image_dir: Path
    reference_max_side: int
    characters_file: str
    default_character_id: str
    default_background_color: str
    batch_ttl_hours: float
    # API / CORS
    allowed_origins: List[str]
    # Logging
    log_level: str
    log_format: str

    @property
    def use_openai_prompts(self) -> bool:
        if self.prompt_synthesizer == "template":
            return False
        return bool(self.openai_api_key)

def load_config() -> Config:
    return Config(
        kie_api_key = os.getenv("KIE_API_KEY", ""),
        kie_base_url = os.getenv("KIE_BASE_URL", "https://api.kie.ai/api/v1/jobs").rstrip("/"),
        image_model = os.getenv("IMAGE_MODEL", "nano-banana-pro"),
        aspect_ratio = os.getenv("ASPECT_RATIO", "1:1"),
        resolution = os.getenv("RESOLUTION", "1K"),
        output_format = os.getenv("OUTPUT_FORMAT", "jpg"),
        negative_prompt = os.getenv(
            "NEGATIVE_PROMPT",
            "realistic photo, photograph, 3d render, ugly, deformed, blurry, low quality",
        ),
        poll_interval_seconds = _env_float("POLL_INTERVAL_SECONDS", 5.0),
        job_timeout_seconds = _env_float("JOB_TIMEOUT_SECONDS", 300.0),
        http_timeout_seconds = _env_float("HTTP_TIMEOUT_SECONDS", 60.0),
        fetch_retries = int(os.getenv("FETCH_RETRIES", "3")),
        max_reference_images = int(os.getenv("MAX_REFERENCE_IMAGES", "8")),
        max_references_per_character = int(os.getenv("MAX_REFERENCES_PER_CHARACTER", "4")),
        openai_api_key = os.getenv("OPENAI_API_KEY", ""),
        openai_text_model = os.getenv("OPENAI_TEXT_MODEL", "gpt-4o-mini"),
        prompt_synthesizer = os.getenv("PROMPT_SYNTHESIZER", "openai").strip().lower(),
        image_host = os.getenv("IMAGE_HOST", "gcs").strip().lower(),
        gcs_bucket = os.getenv("GCS_BUCKET", "comic-panel-references"),
        signed_url_ttl = int(os.getenv("GCS_SIGNED_URL_TTL", "3600")),
        imgbb_api_key = os.getenv("IMGBB_API_KEY", ""),
        reference_image_dir = Path(os.getenv(
            "REFERENCE_IMAGE_DIR",
            str(Path(__file__).resolve().parent.parent / "references"),
        )),
        reference_max_side = int(os.getenv("REFERENCE_MAX_SIDE", "1024")),
        characters_file = os.getenv("CHARACTERS_FILE", ""),
        default_character_id = os.getenv("DEFAULT_CHARACTER_ID", "theresa"),
        default_background_color = os.getenv("DEFAULT_BACKGROUND_COLOR", "#e8dfd0"),
        batch_ttl_hours = _env_float("BATCH_TTL_HOURS", 24.0),
        allowed_origins = _env_csv("ALLOWED_ORIGINS", "*"),
        log_level = os.getenv("LOG_LEVEL", "INFO"),
        log_format = os.getenv("LOG_FORMAT", ""),
    )

# Load once
config = load_config()
