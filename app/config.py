from pydantic_settings import BaseSettings
from typing import Optional
from urllib.parse import quote_plus

class Settings(BaseSettings):
    postgres_user: str = "bookshop"
    postgres_password: str = ""
    postgres_db: str = "bookshop"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"

    # full URL wins over the postgres_* parts (tests use sqlite)
    sqlalchemy_database_url: Optional[str] = None

    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    ENV: str = "production"
    log_level: str = "INFO"

    # checkout
    payment_window_minutes: int = 24 * 60
    transfer_code_prefix: str = "BK"
    transfer_code_length: int = 8
    transfer_code_max_attempts: int = 5
    auto_confirm_zero_amount: bool = False

    # beneficiary shown in the transfer instruction
    bank_code: str = ""
    bank_name: str = ""
    bank_account_number: str = ""
    bank_account_name: str = ""
    qr_template: str = "compact2"

    # payment signal source
    sepay_webhook_api_key: Optional[str] = None
    sepay_api_token: Optional[str] = None
    sepay_api_url: str = "https://my.sepay.vn/userapi/transactions/list"
    sepay_utc_offset_hours: int = 7  # SePay timestamps are Vietnam local time
    sweep_interval_seconds: int = 60

    # downloads
    download_token_ttl_seconds: int = 300
    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = ""

    @property
    def database_url(self):
        if self.sqlalchemy_database_url:
            return self.sqlalchemy_database_url
        encoded_password = quote_plus(self.postgres_password)
        return (
            f"postgresql+psycopg2://{self.postgres_user}:"
            f"{encoded_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"

settings = Settings()
