from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # 数据库配置
    database_url: str = "duckdb://./mealledger/data/mealledger.duckdb"

    # 时区（系统时钟按此时区计算“今天”和截止时间）
    timezone: str = "Asia/Dhaka"

    # 批量操作和月份窗口的最大天数
    max_range_days: int = 31

    # 日志级别
    log_level: str = "INFO"

    # API配置
    api_title: str = "Meal Ledger API"
    api_version: str = "1.0.0"
    api_prefix: str = "/api/v1"

    # 开发模式
    debug: bool = False

    class Config:
        env_file = ".env"
        env_prefix = "MEALLEDGER_"
        case_sensitive = False


# 全局设置实例
settings = Settings()
