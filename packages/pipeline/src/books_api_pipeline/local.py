"""
In-process release: every external collaborator (provisioning, table,
identity provider, deployment service, artifact bucket) is replaced by a
local implementation so the complete release can run on one machine.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import httpx
import structlog

from books_api_pipeline.artifacts import LocalArtifactStore
from books_api_pipeline.books import (
    BooksGateway,
    BookTable,
    GatewayRouter,
    Handler,
    InMemoryBookTable,
    TableRegistry,
    VersionHandlers,
    make_create_handler,
    make_list_handler,
)
from books_api_pipeline.core import DeploymentError, HookConfig, ILogger
from books_api_pipeline.core.http import make_http_client
from books_api_pipeline.deploy import (
    ALL_AT_ONCE,
    CandidateVersion,
    DeployStage,
    InMemoryDeploymentOrchestrator,
    LocalInvoker,
    PreTrafficHook,
    TrafficShiftPolicy,
    WeightedAlias,
)
from books_api_pipeline.e2e import FunctionalSuite, InMemoryIdentityProvider
from books_api_pipeline.gates import ManualApprovalGate
from books_api_pipeline.pipeline import PipelineRunner
from books_api_pipeline.release import (
    APPROVAL_INFORMATION,
    PRODUCTION_STACK,
    STAGING_STACK,
    ReleaseComponents,
    build_release_pipeline,
)
from books_api_pipeline.stages import BuildAction, DirectorySource, bundle_key

HandlerFactory = Callable[[BookTable], Handler]


def unobserved_create_handler(table: BookTable) -> Handler:
    """A broken build: answers 201 but never writes."""

    def handler(event: dict[str, Any]) -> dict[str, Any]:
        return {"statusCode": 201, "headers": {}, "body": ""}

    return handler


@dataclass(slots=True)
class _Environment:
    name: str
    stack_name: str
    table: InMemoryBookTable
    alias: WeightedAlias
    gateway: BooksGateway
    host: str
    pool_id: str
    client_id: str
    versions: int = 0
    targets: dict[str, str] = field(default_factory=dict)


class LocalBooksPlatform:
    """
    Provisioning layer for local releases: one table, user pool and API
    endpoint per environment, one handler set per deployed version.
    """

    def __init__(
        self,
        *,
        validation_target: str = "books-create",
        artifact_store: Any = None,
        handler_factory: HandlerFactory = make_create_handler,
        logger: ILogger | None = None,
    ) -> None:
        self.validation_target = validation_target
        self.artifact_store = artifact_store
        self.handler_factory = handler_factory
        self.logger: ILogger = logger or structlog.get_logger(__name__)

        self.tables = TableRegistry()
        self.identity = InMemoryIdentityProvider()
        self.invoker = LocalInvoker()
        self.router = GatewayRouter()
        self._envs: dict[str, _Environment] = {}
        self._lock = threading.Lock()

    def add_environment(self, name: str, stack_name: str) -> InMemoryBookTable:
        with self._lock:
            existing = self._envs.get(name)
            if existing is not None:
                return existing.table
            table = self.tables.get_or_create(f"{stack_name}-books")
            alias = WeightedAlias()
            pool_id, client_id = self.identity.create_pool(f"{stack_name}-users")
            gateway = BooksGateway(
                route=alias.route,
                authorize=lambda token, p=pool_id: self.identity.verify_token(p, token),
            )
            host = f"{stack_name.lower()}.books.local"
            self.router.mount(host, gateway)
            self._envs[name] = _Environment(
                name=name,
                stack_name=stack_name,
                table=table,
                alias=alias,
                gateway=gateway,
                host=host,
                pool_id=pool_id,
                client_id=client_id,
            )
            return table

    def _env(self, name: str) -> _Environment:
        with self._lock:
            env = self._envs.get(name)
        if env is None:
            raise DeploymentError(f"Unknown environment {name}")
        return env

    def table_for(self, environment: str) -> InMemoryBookTable:
        return self._env(environment).table

    def provision(
        self, *, environment: str, stack_name: str, artifacts_path: str
    ) -> CandidateVersion:
        if self.artifact_store is not None and not self.artifact_store.exists(
            bundle_key(artifacts_path)
        ):
            raise DeploymentError(f"No bundle under {artifacts_path}")

        env = self._env(environment)
        with self._lock:
            env.versions += 1
            version = str(env.versions)

        table = env.table
        create = self.handler_factory(table)
        env.gateway.add_version(
            version, VersionHandlers(create=create, list=make_list_handler(table))
        )
        target = f"{self.validation_target}:{environment}:{version}"
        self.invoker.register(target, create)
        env.targets[version] = target

        self.logger.info(
            "platform.provisioned",
            environment=environment,
            stack_name=stack_name,
            version=version,
            artifacts_path=artifacts_path,
        )
        return CandidateVersion(
            environment=environment,
            version=version,
            invocation_target=target,
            outputs={
                "API_ENDPOINT": f"https://{env.host}/",
                "USER_POOL_ID": env.pool_id,
                "USER_POOL_CLIENT_ID": env.client_id,
                "TABLE": table.name,
            },
        )

    def live_version(self, environment: str) -> str | None:
        return self._env(environment).alias.live

    def shift_traffic(self, candidate: CandidateVersion, percent: int) -> None:
        self._env(candidate.environment).alias.shift(candidate.version, percent)

    def rollback(self, candidate: CandidateVersion) -> None:
        env = self._env(candidate.environment)
        env.alias.discard(candidate.version)
        env.gateway.remove_version(candidate.version)
        target = env.targets.pop(candidate.version, None)
        if target is not None:
            self.invoker.unregister(target)
        self.logger.info(
            "platform.rolled_back",
            environment=candidate.environment,
            version=candidate.version,
        )

    def transport(self) -> httpx.MockTransport:
        return self.router.transport()

    def client(self) -> httpx.Client:
        return make_http_client(transport=self.transport())


@dataclass(slots=True)
class LocalRelease:
    runner: PipelineRunner
    platform: LocalBooksPlatform
    orchestrator: InMemoryDeploymentOrchestrator
    approval: ManualApprovalGate
    components: ReleaseComponents
    hooks: dict[str, PreTrafficHook]


def build_local_release(
    *,
    source_root: Path,
    artifact_root: Path,
    hook_config: HookConfig | None = None,
    handler_factory: HandlerFactory = make_create_handler,
    traffic_policy: TrafficShiftPolicy = ALL_AT_ONCE,
    logger: ILogger | None = None,
    sleep: Callable[[float], None] | None = None,
    branch: str = "main",
) -> LocalRelease:
    hook_config = hook_config or HookConfig()
    log: ILogger = logger or structlog.get_logger("books_api_pipeline")
    store = LocalArtifactStore(artifact_root)

    platform = LocalBooksPlatform(
        validation_target=hook_config.validation_target,
        artifact_store=store,
        handler_factory=handler_factory,
        logger=log,
    )
    orchestrator = InMemoryDeploymentOrchestrator(logger=log)

    hooks: dict[str, PreTrafficHook] = {}
    for env_name, stack in (("staging", STAGING_STACK), ("production", PRODUCTION_STACK)):
        table = platform.add_environment(env_name, stack)
        hook_kwargs: dict[str, Any] = {}
        if sleep is not None:
            hook_kwargs["sleep"] = sleep
        hook = PreTrafficHook(
            config=hook_config.model_copy(update={"backing_store_name": table.name}),
            invoker=platform.invoker,
            store=table,
            reporter=orchestrator,
            logger=log.bind(environment=env_name),
            **hook_kwargs,
        )
        orchestrator.register_hook(hook, environment=env_name)
        hooks[env_name] = hook

    def _deploy(env_name: str) -> DeployStage:
        return DeployStage(
            environment=env_name,
            provisioner=platform,
            orchestrator=orchestrator,
            config=hook_config,
            traffic_policy=traffic_policy,
            logger=log,
        )

    approval = ManualApprovalGate(
        "Review", additional_information=APPROVAL_INFORMATION, logger=log
    )
    components = ReleaseComponents(
        source=DirectorySource(source_root, branch=branch),
        build=BuildAction(),
        staging=_deploy("staging"),
        tests=FunctionalSuite(
            identity=platform.identity,
            tables=platform.tables.get,
            client_factory=platform.client,
            logger=log,
        ),
        approval=approval,
        production=_deploy("production"),
    )
    runner = build_release_pipeline(
        components, artifact_store=store, logger=log
    )
    return LocalRelease(
        runner=runner,
        platform=platform,
        orchestrator=orchestrator,
        approval=approval,
        components=components,
        hooks=hooks,
    )
