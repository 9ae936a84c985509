import mysql.connector
from mysql.connector import pooling, Error
from contextlib import contextmanager

from commons.base_logger import BaseLogger
from meter.errors import PersistenceError
from tools.config_loader import load_config


class BaseDB:
    """
    数据库连接基类，提供连接池、日志记录、连接管理和上下文管理功能。
    连接参数优先取构造参数，缺省时读取 config/meter.yaml 的 mysqlconfig 配置块。
    """

    _instance = None  # 单例实例变量

    def __new__(cls, *args, **kwargs):
        # 单例：每个子类仅创建一个实例
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, **kwargs):
        # 单例下只初始化一次
        if getattr(self, 'initialized', False):
            return
        self.logger = BaseLogger(name='DB', to_file=True)

        cfg = kwargs or load_config('mysqlconfig')
        self.host = cfg.get('host', 'localhost')
        self.port = int(cfg.get('port', 3306))
        self.user = cfg.get('user')
        self.password = cfg.get('password')
        self.database = cfg.get('database')
        self.pool_size = int(cfg.get('pool_size', 4))

        self.connection_pool = None         # 连接池对象
        self.use_pool = True                # 是否启用连接池

        self._initialize_connection_pool()
        self.initialized = True

    def _initialize_connection_pool(self):
        """尝试创建连接池，失败则退回到普通连接模式"""
        try:
            self.connection_pool = pooling.MySQLConnectionPool(
                pool_name="meterpool",
                pool_size=self.pool_size,
                host=self.host,
                port=self.port,
                user=self.user,
                password=self.password,
                database=self.database
            )
            self.logger.log_info('成功创建数据库连接池')
            self.use_pool = True
        except Error as e:
            self.logger.log_error(f'连接池创建失败，降级为普通连接: {e}', exc_info=False)
            self.use_pool = False
            self.connection_pool = None

    def _connect_direct(self):
        """创建一个普通数据库连接（不使用连接池）"""
        try:
            return mysql.connector.connect(
                host=self.host,
                port=self.port,
                user=self.user,
                password=self.password,
                database=self.database,
                autocommit=True
            )
        except Error as e:
            self.logger.log_error(f'普通数据库连接失败: {e}', exc_info=False)
            return None

    def get_connection(self):
        """获取数据库连接，根据是否启用连接池决定方式"""
        try:
            if self.use_pool and self.connection_pool:
                return self.connection_pool.get_connection()
            return self._connect_direct()
        except Error as e:
            self.logger.log_error(f'获取数据库连接失败: {e}', exc_info=False)
            return None

    def close_connection(self, conn):
        """安全关闭数据库连接，支持连接池连接和普通连接"""
        if conn:
            try:
                # 连接池连接的 close() 即归还到池
                conn.close()
            except Error as e:
                self.logger.log_error(f'关闭数据库连接时发生错误: {e}', exc_info=False)

    @contextmanager
    def connection_ctx(self):
        """
        上下文管理器：自动获取并释放数据库连接；拿不到连接抛 PersistenceError
        用法：
            with db.connection_ctx() as conn:
                cursor = conn.cursor()
                ...
        """
        conn = self.get_connection()
        if conn is None:
            raise PersistenceError(f"无法连接数据库 {self.host}:{self.port}/{self.database}")
        try:
            yield conn
        finally:
            self.close_connection(conn)
