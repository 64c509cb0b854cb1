"""
数据访问层模块

提供异步的数据访问接口，包括：
- MetricSampleRepository: 指标样本写入与查询
- AlertRuleRepository: 告警规则读写
- AlertRepository: 告警持久化与查询
- WorkflowRepository: 工作流定义及其有序动作
- WorkflowLogRepository: 工作流审计日志（只追加）
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import func, select, text, update
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import (
    ActionOutcome,
    Alert,
    AlertIntent,
    AlertRule,
    TelemetrySample,
    Workflow,
    WorkflowActionSpec,
    WorkflowLogEntry,
)
from .schema import (
    AlertORM,
    AlertRuleORM,
    Base,
    MetricSampleORM,
    WorkflowActionORM,
    WorkflowLogORM,
    WorkflowORM,
)


class DatabaseError(Exception):
    """数据库操作异常"""

    pass


class NotFoundError(DatabaseError):
    """数据未找到异常"""

    pass


class Database:
    """数据库管理类

    提供数据库连接、会话管理和初始化功能。
    """

    def __init__(self, db_path: str = "sqlite+aiosqlite:///./data/alertflow.db"):
        self.db_path = db_path
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise DatabaseError("Database not initialized. Call init() first.")
        return self._session_factory

    async def init(self) -> None:
        """初始化数据库连接并创建表"""
        if self.db_path.startswith("sqlite") and ":memory:" not in self.db_path:
            db_file = Path(self.db_path.split("///", 1)[-1])
            db_file.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._engine = create_async_engine(
                self.db_path,
                echo=False,
                pool_pre_ping=True,
                pool_recycle=3600,
            )

            self._session_factory = async_sessionmaker(
                self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )

            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            raise DatabaseError(f"Database initialization failed: {e}") from e

    async def close(self) -> None:
        """关闭数据库连接"""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def session(self):
        """获取数据库会话上下文管理器"""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except DatabaseError:
                await session.rollback()
                raise
            except Exception as e:
                await session.rollback()
                raise DatabaseError(f"Database operation failed: {e}") from e

    async def ping(self) -> bool:
        """执行一次往返查询，用于健康检查"""
        async with self.session() as session:
            await session.execute(text("SELECT 1"))
        return True


class MetricSampleRepository:
    """指标样本数据访问类"""

    def __init__(self, db: Database):
        self.db = db

    async def create(self, sample: TelemetrySample) -> int:
        """保存样本，返回行ID"""
        async with self.db.session() as session:
            row = MetricSampleORM(
                device_id=sample.device_id,
                timestamp=sample.timestamp,
                metrics=dict(sample.metrics),
            )
            session.add(row)
            await session.flush()
            return row.id

    async def list_samples(
        self, device_id: Optional[str] = None, limit: int = 100
    ) -> list[TelemetrySample]:
        """按采样时间倒序列出样本"""
        async with self.db.session() as session:
            query = select(MetricSampleORM)
            if device_id:
                query = query.where(MetricSampleORM.device_id == device_id)
            query = query.order_by(MetricSampleORM.timestamp.desc()).limit(limit)
            result = await session.execute(query)
            return [
                TelemetrySample(device_id=row.device_id, timestamp=row.timestamp, metrics=row.metrics)
                for row in result.scalars().all()
            ]

    async def count_samples(self, device_id: Optional[str] = None) -> int:
        async with self.db.session() as session:
            query = select(func.count(MetricSampleORM.id))
            if device_id:
                query = query.where(MetricSampleORM.device_id == device_id)
            result = await session.execute(query)
            return result.scalar() or 0


class AlertRuleRepository:
    """告警规则数据访问类

    规则由管理端维护；告警流水线只读取当前规则集。
    """

    def __init__(self, db: Database):
        self.db = db

    async def create(self, rule: AlertRule) -> AlertRule:
        """创建规则"""
        async with self.db.session() as session:
            row = AlertRuleORM.from_pydantic(rule)
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return row.to_pydantic()

    async def get_by_id(self, rule_id: int) -> Optional[AlertRule]:
        async with self.db.session() as session:
            row = await session.get(AlertRuleORM, rule_id)
            return row.to_pydantic() if row else None

    async def list_rules(self, newest_first: bool = False) -> list[AlertRule]:
        """列出全部规则

        评估时按创建顺序读取，管理端列表按创建时间倒序。
        """
        async with self.db.session() as session:
            query = select(AlertRuleORM)
            if newest_first:
                query = query.order_by(AlertRuleORM.created_at.desc(), AlertRuleORM.id.desc())
            else:
                query = query.order_by(AlertRuleORM.id.asc())
            result = await session.execute(query)
            return [row.to_pydantic() for row in result.scalars().all()]


class AlertRepository:
    """告警数据访问类

    告警只新增不修改。
    """

    def __init__(self, db: Database):
        self.db = db

    async def create(self, intent: AlertIntent) -> Alert:
        """持久化告警"""
        async with self.db.session() as session:
            row = AlertORM.from_intent(intent)
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return row.to_pydantic()

    async def get_by_id(self, alert_id: int) -> Optional[Alert]:
        async with self.db.session() as session:
            row = await session.get(AlertORM, alert_id)
            return row.to_pydantic() if row else None

    async def list_alerts(
        self,
        device_id: Optional[str] = None,
        metric: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Alert]:
        """按创建时间倒序列出告警"""
        async with self.db.session() as session:
            query = select(AlertORM)
            if device_id:
                query = query.where(AlertORM.device_id == device_id)
            if metric:
                query = query.where(AlertORM.metric == metric)
            query = (
                query.order_by(AlertORM.created_at.desc(), AlertORM.id.desc())
                .limit(limit)
                .offset(offset)
            )
            result = await session.execute(query)
            return [row.to_pydantic() for row in result.scalars().all()]

    async def count_alerts(self, device_id: Optional[str] = None) -> int:
        async with self.db.session() as session:
            query = select(func.count(AlertORM.id))
            if device_id:
                query = query.where(AlertORM.device_id == device_id)
            result = await session.execute(query)
            return result.scalar() or 0


class WorkflowRepository:
    """工作流数据访问类

    工作流创建后不可修改；动作按插入顺序编号。
    """

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        name: str,
        event_type: str,
        actions: list[WorkflowActionSpec],
        conditions: Optional[dict[str, Any]] = None,
    ) -> Workflow:
        """创建工作流及其动作"""
        async with self.db.session() as session:
            row = WorkflowORM(name=name, event_type=event_type, conditions=conditions)
            row.actions = [
                WorkflowActionORM(
                    position=position,
                    action_type=action.action_type,
                    parameters=action.parameters,
                )
                for position, action in enumerate(actions)
            ]
            session.add(row)
            await session.flush()
            await session.refresh(row, attribute_names=["created_at"])
            return row.to_pydantic()

    async def get_by_id(self, workflow_id: int) -> Optional[Workflow]:
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkflowORM).where(WorkflowORM.id == workflow_id)
            )
            row = result.scalar_one_or_none()
            return row.to_pydantic() if row else None

    async def find_by_event_type(self, event_type: str) -> list[Workflow]:
        """查找触发类型匹配的工作流"""
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkflowORM)
                .where(WorkflowORM.event_type == event_type)
                .order_by(WorkflowORM.id.asc())
            )
            return [row.to_pydantic() for row in result.scalars().all()]

    async def list_workflows(self, limit: int = 100, offset: int = 0) -> list[Workflow]:
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkflowORM)
                .order_by(WorkflowORM.created_at.desc(), WorkflowORM.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return [row.to_pydantic() for row in result.scalars().all()]

    async def delete(self, workflow_id: int) -> bool:
        """删除工作流

        动作随之删除，审计日志保留并解除关联。
        """
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkflowORM).where(WorkflowORM.id == workflow_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return False
            await session.execute(
                update(WorkflowLogORM)
                .where(WorkflowLogORM.workflow_id == workflow_id)
                .values(workflow_id=None)
            )
            await session.delete(row)
            return True

    async def count_actions(self, workflow_id: Optional[int] = None) -> int:
        async with self.db.session() as session:
            query = select(func.count(WorkflowActionORM.id))
            if workflow_id is not None:
                query = query.where(WorkflowActionORM.workflow_id == workflow_id)
            result = await session.execute(query)
            return result.scalar() or 0


class WorkflowLogRepository:
    """工作流审计日志数据访问类"""

    def __init__(self, db: Database):
        self.db = db

    async def append(
        self,
        workflow_id: Optional[int],
        event_data: dict[str, Any],
        outcomes: list[ActionOutcome],
    ) -> int:
        """追加一条执行记录，返回日志ID"""
        async with self.db.session() as session:
            row = WorkflowLogORM(
                workflow_id=workflow_id,
                event_data=event_data,
                result=[outcome.model_dump(mode="json") for outcome in outcomes],
            )
            session.add(row)
            await session.flush()
            return row.id

    async def list_logs(
        self,
        workflow_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[WorkflowLogEntry]:
        """按执行时间倒序列出日志"""
        async with self.db.session() as session:
            query = select(WorkflowLogORM)
            if workflow_id is not None:
                query = query.where(WorkflowLogORM.workflow_id == workflow_id)
            query = (
                query.order_by(WorkflowLogORM.executed_at.desc(), WorkflowLogORM.id.desc())
                .limit(limit)
                .offset(offset)
            )
            result = await session.execute(query)
            return [row.to_pydantic() for row in result.scalars().all()]

    async def count_logs(self, workflow_id: Optional[int] = None) -> int:
        async with self.db.session() as session:
            query = select(func.count(WorkflowLogORM.id))
            if workflow_id is not None:
                query = query.where(WorkflowLogORM.workflow_id == workflow_id)
            result = await session.execute(query)
            return result.scalar() or 0
