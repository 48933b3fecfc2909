# request/response channels between the UI and the services, and app wiring
from __future__ import annotations

import platform
import sys
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.auth import AuthGateway, RateLimiter
from core.catalog import CatalogService
from core.products import ProductService
from core.reports import ReportService
from core.sales import SalesService
from core.sessions import SessionRegistry
from core.users import UserService
from db.database import Database
from db.models import User
from utils.config import APP_NAME, APP_VERSION, Settings
from utils.errors import ValidationError, failure, handle
from utils.logger import get_logger

_logger = get_logger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]
Operation = Callable[[Dict[str, Any], User], Awaitable[Dict[str, Any]]]


def _token(payload: Dict[str, Any]) -> Optional[str]:
    return payload.get("token") or payload.get("session_token")


class Bridge:
    """
    Channel name -> async handler. ``invoke`` always returns a result dict;
    nothing raised by a handler crosses it.
    """

    def __init__(self, ctx: "AppContext") -> None:
        self.ctx = ctx
        self._handlers: Dict[str, Handler] = {}
        self._register_all()

    @property
    def channels(self) -> List[str]:
        return sorted(self._handlers)

    def register(self, channel: str, handler: Handler) -> None:
        self._handlers[channel] = handler

    async def invoke(self, channel: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        handler = self._handlers.get(channel)
        if handler is None:
            _logger.warning(f"Unknown channel requested: {channel!r}")
            return failure(
                ValidationError(f"Unknown channel '{channel}'", code="UNKNOWN_CHANNEL")
            )
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            return failure(ValidationError("Request payload must be an object"))
        try:
            return await handler(payload)
        except Exception as exc:
            return handle(exc)

    # ---------- registration helpers ----------

    def _audited(self, action: str, operation: Operation) -> Operation:
        async def run(payload: Dict[str, Any], user: User) -> Dict[str, Any]:
            result = await operation(payload, user)
            if result.get("success"):
                self.ctx.auth.log_user_activity(user, action)
            return result

        return run

    def _user(self, channel: str, operation: Operation, audit: bool = False) -> None:
        if audit:
            operation = self._audited(channel, operation)
        self.register(channel, self.ctx.auth.with_auth(operation))

    def _admin(self, channel: str, operation: Operation, audit: bool = True) -> None:
        if audit:
            operation = self._audited(channel, operation)
        self.register(channel, self.ctx.auth.with_admin_auth(operation))

    def _register_all(self) -> None:
        ctx = self.ctx
        auth, users, catalog = ctx.auth, ctx.users, ctx.catalog
        products, sales, reports = ctx.products, ctx.sales, ctx.reports

        # session
        self.register(
            "login", lambda p: auth.login(p.get("username"), p.get("password"))
        )
        self.register("logout", lambda p: auth.logout(_token(p)))
        self.register("validate-session", lambda p: auth.validate_session(_token(p)))

        async def change_password(payload: Dict[str, Any]) -> Dict[str, Any]:
            token = _token(payload)

            async def op(p: Dict[str, Any], user: User) -> Dict[str, Any]:
                return await users.change_password(
                    user.id, p.get("old_password"), p.get("new_password"), token
                )

            return await auth.with_auth(self._audited("change-password", op))(payload)

        self.register("change-password", change_password)

        # users
        self._admin("list-users", lambda p, u: users.list_users(), audit=False)
        self._admin("user-statistics", lambda p, u: users.user_statistics(), audit=False)
        self._admin(
            "list-users-activity",
            lambda p, u: users.list_users_with_activity(p.get("limit", 50)),
            audit=False,
        )
        self._admin(
            "add-user",
            lambda p, u: users.add_user(
                p.get("username"), p.get("password"), p.get("role", "standard")
            ),
        )
        self._admin(
            "edit-user",
            lambda p, u: users.edit_user(
                p.get("id"), p.get("username"), p.get("role"), p.get("password")
            ),
        )
        self._admin(
            "delete-user", lambda p, u: users.delete_user(p.get("username"), acting_user=u)
        )

        # catalog
        self.register("list-categories", lambda p: catalog.list_categories())
        self.register(
            "list-categories-full", lambda p: catalog.list_categories_with_subcategories()
        )
        self.register(
            "list-subcategories", lambda p: catalog.list_subcategories(p.get("category_id"))
        )
        self._user("add-category", lambda p, u: catalog.add_category(p.get("name")), True)
        self._user(
            "update-category",
            lambda p, u: catalog.update_category(p.get("id"), p.get("name")),
            True,
        )
        self._user(
            "delete-category", lambda p, u: catalog.delete_category(p.get("id")), True
        )
        self._user(
            "add-subcategory",
            lambda p, u: catalog.add_subcategory(p.get("name"), p.get("category_id")),
            True,
        )
        self._user(
            "update-subcategory",
            lambda p, u: catalog.update_subcategory(p.get("id"), p.get("name")),
            True,
        )
        self._user(
            "delete-subcategory",
            lambda p, u: catalog.delete_subcategory(p.get("id")),
            True,
        )

        # products and stock
        self.register(
            "list-products",
            lambda p: products.list_products(
                p.get("page", 1), p.get("limit"), p.get("filters")
            ),
        )
        self.register("get-product", lambda p: products.get_product(p.get("id")))
        self._user("add-product", lambda p, u: products.create_product(p), True)
        self._user(
            "update-product",
            lambda p, u: products.update_product(
                p.get("id"), {k: val for k, val in p.items() if k != "id"}
            ),
            True,
        )
        self._user(
            "update-product-field",
            lambda p, u: products.update_product_field(
                p.get("id"), p.get("field"), p.get("value")
            ),
            True,
        )
        self._user(
            "adjust-stock",
            lambda p, u: products.adjust_stock(p.get("id"), p.get("delta"), p.get("reason")),
            True,
        )
        self._user(
            "register-extraction",
            lambda p, u: products.record_extraction(
                p.get("id"), p.get("quantity"), p.get("reason")
            ),
            True,
        )
        self._user(
            "register-defectives",
            lambda p, u: products.record_defectives(
                p.get("id"), p.get("quantity"), p.get("reason")
            ),
            True,
        )
        self._user("delete-product", lambda p, u: products.delete_product(p.get("id")), True)
        self._user(
            "list-stock-movements", lambda p, u: products.list_movements(p.get("id"))
        )

        # sales
        self._user(
            "register-sale",
            lambda p, u: sales.register_sale(
                p.get("lines"), p.get("payment_method"), p.get("discount", 0), u.id
            ),
            True,
        )
        self._user("list-sales", lambda p, u: sales.list_sales(p))
        self._user("get-sale", lambda p, u: sales.get_sale(p.get("id")))
        self._user(
            "sales-statistics",
            lambda p, u: sales.sales_statistics(p.get("date_from"), p.get("date_to")),
        )
        self._user(
            "top-products",
            lambda p, u: sales.top_products(
                p.get("limit", 10), p.get("date_from"), p.get("date_to")
            ),
        )

        # services
        self.register("list-services", lambda p: sales.list_services())
        self.register("get-service", lambda p: sales.get_service(p.get("id")))
        self._user("add-service", lambda p, u: sales.add_service(p), True)
        self._user(
            "edit-service",
            lambda p, u: sales.edit_service(
                p.get("id"), {k: val for k, val in p.items() if k != "id"}
            ),
            True,
        )
        self._user("delete-service", lambda p, u: sales.delete_service(p.get("id")), True)

        # reports and system
        self._user("inventory-report", lambda p, u: reports.inventory_report())
        self.register("test-connection", lambda p: self._test_connection())
        self.register(
            "get-app-version",
            lambda p: self._ok({"name": APP_NAME, "version": APP_VERSION}),
        )
        self._admin("get-system-info", lambda p, u: self._system_info(), audit=False)

    @staticmethod
    async def _ok(data: Dict[str, Any]) -> Dict[str, Any]:
        return {"success": True, **data}

    async def _test_connection(self) -> Dict[str, Any]:
        health = await self.ctx.database.health_check()
        if not health.get("healthy"):
            return {"success": False, "error": "DB_UNAVAILABLE: Database connection error"}
        return {"success": True, "pool": health}

    async def _system_info(self) -> Dict[str, Any]:
        settings = self.ctx.settings
        return {
            "success": True,
            "app": {"name": APP_NAME, "version": APP_VERSION},
            "environment": settings.environment,
            "python": sys.version.split()[0],
            "platform": platform.platform(),
            "database": {"path": settings.db_path, **self.ctx.database.pool.stats()},
            "cached_sessions": len(self.ctx.registry),
        }


@dataclass
class AppContext:
    settings: Settings
    database: Database
    registry: SessionRegistry
    auth: AuthGateway
    users: UserService
    catalog: CatalogService
    products: ProductService
    sales: SalesService
    reports: ReportService
    bridge: Optional[Bridge] = None

    async def start(self) -> None:
        """Open storage, prepare auth, bootstrap the admin and start the session sweeper."""
        await self.database.open()
        await self.auth.prepare()
        await self.users.ensure_admin(
            self.settings.admin_username, self.settings.admin_password
        )
        await self.registry.sweep_expired()
        self.registry.start_sweeper(self.settings.session_sweep_seconds)
        _logger.info(f"{APP_NAME} {APP_VERSION} started ({self.settings.environment})")

    async def close(self) -> None:
        await self.registry.stop_sweeper()
        await self.database.close()

    async def invoke(self, channel: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.bridge.invoke(channel, payload)


def build_app(settings: Settings, clock=None) -> AppContext:
    """Wire the services for one process. ``clock`` overrides utcnow (tests)."""
    clock_kw = {"clock": clock} if clock is not None else {}
    database = Database.from_settings(settings)
    registry = SessionRegistry(
        database,
        settings.session_timeout_hours,
        settings.session_revalidate_seconds,
        **clock_kw,
    )
    products = ProductService(database, settings, **clock_kw)
    ctx = AppContext(
        settings=settings,
        database=database,
        registry=registry,
        auth=AuthGateway(
            database,
            registry,
            settings,
            RateLimiter(settings.rate_limit_max, settings.rate_limit_window),
        ),
        users=UserService(database, registry, settings, **clock_kw),
        catalog=CatalogService(database),
        products=products,
        sales=SalesService(database, products, **clock_kw),
        reports=ReportService(database, settings),
    )
    ctx.bridge = Bridge(ctx)
    return ctx
