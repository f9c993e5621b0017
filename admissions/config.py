from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'School Admissions'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Kolkata'
    database_url: str = 'sqlite:///./admissions.db'
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200

    min_password_length: int = 6
    staff_roles: list[str] = ['super_admin', 'admin', 'institution_admin', 'staff']

    application_number_format: str = 'APP-{year}-{seq:05d}'
    admission_number_format: str = 'ADM-{year}-{seq:04d}'
    roll_number_format: str = '{seq}'
    teacher_employee_id_format: str = 'TCH-{seq:04d}'
    staff_employee_id_format: str = 'STF-{seq:04d}'

    identifier_service_url: str = ''
    account_service_url: str = ''
    class_service_url: str = ''
    service_bearer_token: str = ''
    http_timeout_seconds: float = 10.0


settings = Settings()
