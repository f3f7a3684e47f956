"""MySQL MCP 서버 에러 분류."""


class MySQLMCPError(Exception):
    code: str = "error"


class AdmissionRejected(MySQLMCPError):
    """쿼리가 읽기 전용 검사를 통과하지 못함 (시스템 장애 아님)."""
    code = "admission_rejected"


class ConnectivityFailure(MySQLMCPError):
    """풀 생성 또는 liveness probe 실패."""
    code = "connectivity_failure"


class ProxyStartupFailure(MySQLMCPError):
    """Cloud SQL Proxy 기동 실패 (바이너리 없음, 다운로드 실패, 준비 타임아웃)."""
    code = "proxy_startup_failure"


class UnsupportedPlatformError(ProxyStartupFailure):
    code = "unsupported_platform"


class BinaryDownloadError(ProxyStartupFailure):
    code = "binary_download_failed"


class QueryTimeout(MySQLMCPError):
    code = "query_timeout"


class DriverError(MySQLMCPError):
    """DB 드라이버 실행 오류 (원본 메시지 유지)."""
    code = "driver_error"
