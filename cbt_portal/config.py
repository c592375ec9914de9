from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration settings"""

    # Application
    app_name: str = "School CBT Portal"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./cbt_portal.db"

    # Security
    secret_key: str = "CHANGE_ME_TO_A_RANDOM_SECRET"

    # Exams
    default_passing_percentage: int = 50

    # File Upload
    max_upload_size_mb: int = 10

    # Seeded on first startup when no admin exists
    seed_admin_email: str = "admin@example.com"
    seed_admin_password: str = "admin123"

    class Config:
        env_file = ".env"
        env_prefix = "CBT_"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
