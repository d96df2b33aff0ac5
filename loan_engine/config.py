from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "LOAN_ENGINE_"}

    # App
    log_level: str = "INFO"

    # Decimal context used for every calculation (fixed so results never
    # depend on the caller's ambient decimal context)
    decimal_precision: int = 28

    # Custom formula limits
    formula_max_length: int = 2000
    formula_max_tokens: int = 500
    formula_max_depth: int = 40

    # Loan-detail preview runs the formula as if the payment were this late
    formula_preview_days_overdue: int = 30
    # Validation flags results above principal * this multiple
    formula_reasonable_multiple: int = 10

    # Owner stamped on materialized recurring bills when the caller passes none
    default_owner_id: str | None = None


settings = Settings()
