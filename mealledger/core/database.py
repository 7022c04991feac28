"""
数据库连接和管理模块
负责 DuckDB 数据库的初始化、连接管理、表结构定义和事务控制

数据库表说明：
- users: 用户基本信息和角色
- user_balances: 按余额类型（早餐/午餐/晚餐）缓存的余额及冻结状态
- meals: 手动设置的每日餐次记录（缺省时由资格引擎推导）
- holidays: 节假日目录
- policy_settings: 全局策略文档（单例，带版本号）
- month_settings: 月度账期设置和生命周期标记
- transactions: 余额流水（只追加）
- breakfasts / breakfast_participants: 早餐事件及参与人分摊
- audit_logs: 审计日志，按 (entity_type, entity_id) 查询
"""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import duckdb

from .exceptions import BaseApplicationError, ConcurrencyError, DatabaseError
from ..config.settings import settings

# 完整的表结构定义
# 金额统一以分为单位存储，避免浮点精度问题
SCHEMA_SQL = r"""
CREATE SEQUENCE IF NOT EXISTS users_id_seq;
CREATE TABLE IF NOT EXISTS users (
  id INTEGER DEFAULT nextval('users_id_seq') PRIMARY KEY,
  name TEXT NOT NULL,
  email TEXT,
  role TEXT CHECK(role IN ('user','manager','admin','superadmin')) NOT NULL DEFAULT 'user',
  is_active BOOLEAN DEFAULT TRUE,
  created_at TIMESTAMP DEFAULT current_timestamp
);

CREATE TABLE IF NOT EXISTS user_balances (
  user_id INTEGER NOT NULL,
  balance_type TEXT CHECK(balance_type IN ('breakfast','lunch','dinner')) NOT NULL,
  amount_cents BIGINT NOT NULL DEFAULT 0,
  is_frozen BOOLEAN NOT NULL DEFAULT FALSE,
  frozen_at TIMESTAMP,
  frozen_by INTEGER,
  frozen_reason TEXT,
  PRIMARY KEY (user_id, balance_type)
);

CREATE SEQUENCE IF NOT EXISTS meals_id_seq;
CREATE TABLE IF NOT EXISTS meals (
  meal_id INTEGER DEFAULT nextval('meals_id_seq') PRIMARY KEY,
  user_id INTEGER NOT NULL,
  date DATE NOT NULL,
  meal_type TEXT CHECK(meal_type IN ('lunch','dinner')) NOT NULL,
  is_on BOOLEAN NOT NULL,
  count INTEGER NOT NULL CHECK(count >= 0),
  is_manually_set BOOLEAN NOT NULL DEFAULT FALSE,
  modified_by INTEGER,
  notes TEXT,
  created_at TIMESTAMP DEFAULT current_timestamp,
  updated_at TIMESTAMP DEFAULT current_timestamp,
  UNIQUE (user_id, date, meal_type)
);

CREATE SEQUENCE IF NOT EXISTS holidays_id_seq;
CREATE TABLE IF NOT EXISTS holidays (
  holiday_id INTEGER DEFAULT nextval('holidays_id_seq') PRIMARY KEY,
  date DATE NOT NULL,
  name TEXT NOT NULL,
  local_name TEXT,
  type TEXT CHECK(type IN ('government','optional','religious')) NOT NULL DEFAULT 'government',
  is_recurring BOOLEAN NOT NULL DEFAULT FALSE,
  recurring_month INTEGER,
  recurring_day INTEGER,
  is_active BOOLEAN NOT NULL DEFAULT TRUE,
  added_by INTEGER,
  created_at TIMESTAMP DEFAULT current_timestamp
);

CREATE TABLE IF NOT EXISTS policy_settings (
  settings_key TEXT PRIMARY KEY,
  version INTEGER NOT NULL,
  document TEXT NOT NULL,  -- PolicySettings 的 JSON 序列化
  modified_by INTEGER,
  updated_at TIMESTAMP DEFAULT current_timestamp
);

CREATE SEQUENCE IF NOT EXISTS month_settings_id_seq;
CREATE TABLE IF NOT EXISTS month_settings (
  month_id INTEGER DEFAULT nextval('month_settings_id_seq') PRIMARY KEY,
  year INTEGER NOT NULL,
  month INTEGER NOT NULL CHECK(month BETWEEN 1 AND 12),
  start_date DATE NOT NULL,
  end_date DATE NOT NULL,
  lunch_rate_cents BIGINT NOT NULL DEFAULT 0,
  dinner_rate_cents BIGINT NOT NULL DEFAULT 0,
  is_finalized BOOLEAN NOT NULL DEFAULT FALSE,
  finalized_at TIMESTAMP,
  finalized_by INTEGER,
  is_carried_forward BOOLEAN NOT NULL DEFAULT FALSE,
  carried_forward_at TIMESTAMP,
  carried_forward_by INTEGER,
  notes TEXT,
  created_by INTEGER,
  modified_by INTEGER,
  created_at TIMESTAMP DEFAULT current_timestamp,
  UNIQUE (year, month)
);

CREATE SEQUENCE IF NOT EXISTS transactions_id_seq;
CREATE TABLE IF NOT EXISTS transactions (
  transaction_id INTEGER DEFAULT nextval('transactions_id_seq') PRIMARY KEY,
  user_id INTEGER NOT NULL,
  type TEXT CHECK(type IN ('deposit','deduction','adjustment','refund','reversal')) NOT NULL,
  balance_type TEXT CHECK(balance_type IN ('breakfast','lunch','dinner')) NOT NULL,
  amount_cents BIGINT NOT NULL,  -- 有符号金额
  previous_balance_cents BIGINT NOT NULL,
  new_balance_cents BIGINT NOT NULL,
  description TEXT,
  reference_type TEXT,  -- 关联对象类型：breakfast / month / transaction
  reference_id INTEGER,
  performed_by INTEGER,
  is_reversed BOOLEAN NOT NULL DEFAULT FALSE,
  original_transaction_id INTEGER,
  reversal_reason TEXT,
  correction_count INTEGER NOT NULL DEFAULT 0,
  last_corrected_at TIMESTAMP,
  created_at TIMESTAMP DEFAULT current_timestamp
);

CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id, balance_type);

CREATE SEQUENCE IF NOT EXISTS breakfasts_id_seq;
CREATE TABLE IF NOT EXISTS breakfasts (
  breakfast_id INTEGER DEFAULT nextval('breakfasts_id_seq') PRIMARY KEY,
  date DATE NOT NULL UNIQUE,
  total_cost_cents BIGINT NOT NULL CHECK(total_cost_cents >= 0),
  description TEXT,
  submitted_by INTEGER,
  is_reversed BOOLEAN NOT NULL DEFAULT FALSE,  -- 冲正后不再计入早餐费用
  reversed_at TIMESTAMP,
  reversed_by INTEGER,
  reverse_reason TEXT,
  created_at TIMESTAMP DEFAULT current_timestamp
);

CREATE TABLE IF NOT EXISTS breakfast_participants (
  breakfast_id INTEGER NOT NULL,
  user_id INTEGER NOT NULL,
  cost_cents BIGINT NOT NULL,
  deducted BOOLEAN NOT NULL DEFAULT FALSE,
  deducted_at TIMESTAMP,
  transaction_id INTEGER,
  PRIMARY KEY (breakfast_id, user_id)
);

CREATE SEQUENCE IF NOT EXISTS audit_logs_id_seq;
CREATE TABLE IF NOT EXISTS audit_logs (
  log_id INTEGER DEFAULT nextval('audit_logs_id_seq') PRIMARY KEY,
  entity_type TEXT NOT NULL,  -- meal / month_settings / transaction / balance / policy / holiday / breakfast
  entity_id TEXT NOT NULL,
  user_id INTEGER,  -- 操作涉及的用户
  actor_id INTEGER,  -- 实际执行操作的用户（如管理员）
  action TEXT NOT NULL,
  before_json TEXT,
  after_json TEXT,
  reason TEXT,
  created_at TIMESTAMP DEFAULT current_timestamp
);

CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_logs(entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_user ON audit_logs(user_id);
"""


class DatabaseManager:
    """数据库管理器，封装连接、表结构和事务"""

    def __init__(self, db_path: Optional[str] = None):
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()
        self._depth = 0
        self.db_path = db_path or self._get_db_path_from_settings()

    def _get_db_path_from_settings(self) -> str:
        """从设置中获取数据库路径"""
        db_url = settings.database_url
        if db_url.startswith("duckdb://"):
            db_url = db_url.replace("duckdb://", "")
        if db_url != ":memory:":
            Path(db_url).parent.mkdir(parents=True, exist_ok=True)
        return db_url

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """获取数据库连接（首次访问时建表）"""
        with self._lock:
            if self._connection is None:
                try:
                    self._connection = duckdb.connect(self.db_path)
                except duckdb.Error as e:
                    raise DatabaseError(f"无法打开数据库: {e}", {"db_path": self.db_path})
                self._init_schema()
            return self._connection

    def _init_schema(self):
        """初始化数据库表结构"""
        try:
            self._connection.execute(SCHEMA_SQL)
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to initialize schema: {e}")

    def init_database(self):
        """初始化数据库"""
        self.connection.execute(SCHEMA_SQL)

    def close(self):
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    @contextmanager
    def transaction(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        数据库事务上下文管理器

        可重入：嵌套调用只在最外层执行 BEGIN/COMMIT，内层异常向外传播并由最外层回滚。
        业务异常原样抛出，存储异常统一包装为 DatabaseError / ConcurrencyError。
        """
        with self._lock:
            conn = self.connection
            outermost = self._depth == 0
            if outermost:
                conn.execute("BEGIN TRANSACTION")
            self._depth += 1
            try:
                yield conn
            except BaseApplicationError:
                self._depth -= 1
                if outermost:
                    self._rollback_quietly(conn)
                raise
            except duckdb.Error as e:
                self._depth -= 1
                if outermost:
                    self._rollback_quietly(conn)
                if "conflict" in str(e).lower():
                    raise ConcurrencyError()
                raise DatabaseError(f"数据库操作失败: {e}")
            except Exception:
                self._depth -= 1
                if outermost:
                    self._rollback_quietly(conn)
                raise
            else:
                self._depth -= 1
                if outermost:
                    conn.execute("COMMIT")

    @staticmethod
    def _rollback_quietly(conn: duckdb.DuckDBPyConnection):
        try:
            conn.execute("ROLLBACK")
        except duckdb.Error:
            # 事务可能已被 DuckDB 自行中止
            pass

    def execute(self, query: str, params: list = None):
        """执行写操作"""
        with self._lock:
            try:
                return self.connection.execute(query, params or [])
            except duckdb.Error as e:
                raise DatabaseError(f"Query execution failed: {e}")

    def execute_query(self, query: str, params: list = None) -> list:
        """执行查询并返回结果"""
        with self._lock:
            return self.execute(query, params).fetchall()

    def execute_one(self, query: str, params: list = None) -> Optional[tuple]:
        """执行查询并返回单条结果"""
        with self._lock:
            return self.execute(query, params).fetchone()

    def fetch_dicts(self, query: str, params: list = None) -> List[Dict[str, Any]]:
        """执行查询并以字典列表返回（键为列名）"""
        with self._lock:
            cursor = self.execute(query, params)
            columns = [col[0] for col in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def fetch_dict(self, query: str, params: list = None) -> Optional[Dict[str, Any]]:
        """执行查询并返回单条字典结果"""
        rows = self.fetch_dicts(query, params)
        return rows[0] if rows else None


# 全局数据库管理器实例
db_manager = DatabaseManager()

