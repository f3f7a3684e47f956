from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mysql_mcp.proxy.cloud_sql_proxy import ProxyConfig


class Settings(BaseSettings):
    # =================================================================
    # MySQL 설정
    # =================================================================
    mysql_host: str = "localhost"          # DB 호스트 주소
    mysql_port: int = Field(3306, gt=0)    # DB 포트 번호
    mysql_user: str = "root"               # DB 사용자명
    mysql_password: str = ""               # DB 비밀번호
    mysql_database: str = ""               # DB 이름
    mysql_connection_limit: int = Field(10, gt=0)     # 풀 최대 연결 수
    mysql_connect_timeout: int = Field(60000, gt=0)   # 연결 타임아웃 (ms)

    # =================================================================
    # 쿼리 정책
    # =================================================================
    query_timeout: int = Field(30000, gt=0)  # 쿼리 실행 타임아웃 (ms)
    max_rows: int = Field(1000, gt=0)        # 기본 행 제한 (LIMIT)

    # =================================================================
    # Cloud SQL Proxy 설정
    # =================================================================
    cloud_sql_proxy_enabled: bool = False
    cloud_sql_instance: str = ""             # project:region:instance
    cloud_sql_proxy_port: int = Field(3307, gt=0)
    # 전용 변수가 없으면 GOOGLE_APPLICATION_CREDENTIALS 사용
    cloud_sql_credentials_file: str | None = Field(
        None,
        validation_alias=AliasChoices("cloud_sql_credentials_file", "google_application_credentials"),
    )
    cloud_sql_proxy_binary: str | None = None
    cloud_sql_proxy_auto_download: bool = True
    cloud_sql_proxy_startup_timeout: int = Field(30000, gt=0)  # ms

    # =================================================================
    # 서버 설정
    # =================================================================
    mcp_transport: str = "stdio"  # "stdio" 또는 "http"
    mcp_http_host: str = "0.0.0.0"
    port: int = 8000
    shutdown_grace_timeout: float = Field(10.0, gt=0)  # 종료 유예 시간 (초)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True,
    )

    @property
    def query_timeout_seconds(self) -> float:
        return self.query_timeout / 1000

    @property
    def connect_timeout_seconds(self) -> float:
        return self.mysql_connect_timeout / 1000

    def proxy_config(self) -> ProxyConfig:
        """현재 설정으로 불변 ProxyConfig 스냅샷 생성."""
        return ProxyConfig(
            instance_connection_name=self.cloud_sql_instance,
            port=self.cloud_sql_proxy_port,
            credentials_file=self.cloud_sql_credentials_file or None,
            binary_path=self.cloud_sql_proxy_binary or None,
            auto_download=self.cloud_sql_proxy_auto_download,
            startup_timeout=self.cloud_sql_proxy_startup_timeout / 1000,
        )

