from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    log_level: str = "INFO"  # The logging level to use.
    preview_size: int = Field(128, gt=0, description="Bytes of each box header/body shown in the box dump.")
    hex_columns: int = Field(16, gt=0, description="Bytes per row in hex dumps.")
    max_box_depth: int = Field(32, gt=0, description="Deepest container nesting the box walker accepts.")
    inspect_all_nal_units: bool = False  # Classify every NAL unit in a sample instead of only the first.
    report_sei: bool = False  # Whether SEI samples appear in the sample report.

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
