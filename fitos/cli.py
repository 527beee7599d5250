"""
Maintenance commands (console script `fitos-admin`).

    fitos-admin init-db
    fitos-admin seed --admin-email ops@fitos.io --admin-password '...'
    fitos-admin check-user someone@acme.com
    fitos-admin fix-user someone@acme.com --password 'NewPass123'
    fitos-admin cleanup-sessions
    fitos-admin drop-all-data --yes

Every command prints a short summary and exits non-zero when it fails.
"""
from contextlib import contextmanager
from datetime import datetime

import click
from sqlalchemy.exc import SQLAlchemyError

from fitos.config import get_settings
from fitos.core.exceptions import InvalidInputError
from fitos.core.plans import find_plan
from fitos.core.security import get_password_hash
from fitos.database import SessionLocal, drop_db, init_db
from fitos.models.cost import CostBudget, CostCategory
from fitos.models.tenant import Tenant, TenantType
from fitos.models.user import User, UserRole, UserStatus
from fitos.services import auth as auth_service
from fitos.services import sidebar as sidebar_service
from fitos.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)

SYSTEM_TENANT_SLUG = "fitos"

# Monthly limits in the default currency
DEMO_BUDGETS = (
    (None, 5000.0),
    (CostCategory.INFRASTRUCTURE, 2000.0),
    (CostCategory.API_SERVICES, 1500.0),
)


@contextmanager
def db_session():
    """Session for one command; rolled back and reported as a click error on DB failure."""
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error: {e}", exc_info=True)
        raise click.ClickException(f"Database error: {e}")
    finally:
        db.close()


def _find_users(db, email: str):
    return db.query(User).filter(User.email == email.lower()).all()


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this run.")
def cli(log_level):
    """FitOS maintenance commands."""
    settings = get_settings()
    setup_logging(log_level=log_level or settings.LOG_LEVEL)


@cli.command("init-db")
def init_db_command():
    """Create all tables."""
    try:
        init_db()
    except SQLAlchemyError as e:
        logger.error(f"init-db failed: {e}", exc_info=True)
        raise click.ClickException(f"Could not create tables: {e}")
    click.echo("Database tables created.")


@cli.command()
@click.option("--admin-email", envvar="FITOS_ADMIN_EMAIL", default="admin@fitos.io", show_default=True)
@click.option("--admin-password", envvar="FITOS_ADMIN_PASSWORD", default=None,
              help="Required when the super admin does not exist yet.")
@click.option("--skip-budgets", is_flag=True, help="Do not create the demo cost budgets.")
def seed(admin_email, admin_password, skip_budgets):
    """Create the system tenant, the super admin, sidebar defaults and demo budgets."""
    admin_email = admin_email.lower()
    with db_session() as db:
        tenant = db.query(Tenant).filter(Tenant.slug == SYSTEM_TENANT_SLUG).first()
        if tenant is None:
            plan = find_plan("enterprise")
            tenant = Tenant(
                name="FitOS",
                slug=SYSTEM_TENANT_SLUG,
                tenant_type=TenantType.SYSTEM,
                plan=plan["id"],
                ads_enabled=plan["ads_enabled"],
                admin_email=admin_email,
                billing_email=admin_email,
                extra_slots={},
            )
            db.add(tenant)
            db.flush()
            click.echo(f"Created system tenant '{SYSTEM_TENANT_SLUG}'.")
        else:
            click.echo(f"System tenant '{SYSTEM_TENANT_SLUG}' already exists.")

        admin = db.query(User).filter(User.tenant_id == tenant.id, User.email == admin_email).first()
        if admin is None:
            if not admin_password:
                db.rollback()
                raise click.ClickException("--admin-password (or FITOS_ADMIN_PASSWORD) is required")
            try:
                auth_service.ensure_password_policy(admin_password)
            except InvalidInputError as e:
                db.rollback()
                raise click.ClickException(e.detail)
            admin = User(
                tenant_id=tenant.id,
                email=admin_email,
                hashed_password=get_password_hash(admin_password),
                first_name="Platform",
                last_name="Admin",
                role=UserRole.SUPER_ADMIN,
                status=UserStatus.ACTIVE,
                email_verified=True,
            )
            db.add(admin)
            db.flush()
            click.echo(f"Created super admin {admin_email}.")
        else:
            click.echo(f"Super admin {admin_email} already exists.")
        db.commit()

        menus = sidebar_service.seed_plan_defaults(db, created_by=admin.id)
        click.echo(f"Sidebar defaults seeded for {menus} plan(s).")

        budgets = 0
        if not skip_budgets:
            currency = get_settings().COST_DEFAULT_CURRENCY
            for category, limit in DEMO_BUDGETS:
                exists = (
                    db.query(CostBudget.id)
                    .filter(CostBudget.category.is_(None) if category is None else CostBudget.category == category)
                    .first()
                )
                if exists:
                    continue
                db.add(CostBudget(
                    category=category,
                    monthly_limit=limit,
                    currency=currency,
                    start_date=datetime.utcnow(),
                ))
                budgets += 1
            db.commit()
        click.echo(f"Cost budgets created: {budgets}.")


@cli.command("check-user")
@click.argument("email")
def check_user(email):
    """Show every account registered with EMAIL."""
    with db_session() as db:
        users = _find_users(db, email)
        if not users:
            raise click.ClickException(f"No user with email {email}")

        now = datetime.utcnow()
        for user in users:
            tenant = user.tenant
            click.echo(f"User {user.id}")
            click.echo(f"  tenant:         {tenant.slug} ({tenant.tenant_type}, active={tenant.is_active})")
            click.echo(f"  role:           {user.role.value}")
            click.echo(f"  status:         {user.status.value}")
            click.echo(f"  email verified: {user.email_verified}")
            click.echo(f"  locked:         {user.is_locked(now)}")
            click.echo(f"  failed logins:  {user.failed_login_attempts}")
            click.echo(f"  last login:     {user.last_login_at or 'never'}")


@cli.command("fix-user")
@click.argument("email")
@click.option("--tenant", "tenant_slug", default=None, help="Tenant slug when the email exists in several tenants.")
@click.option("--password", default=None, help="Set a new password.")
def fix_user(email, tenant_slug, password):
    """Reactivate, unlock and verify the account for EMAIL."""
    with db_session() as db:
        users = _find_users(db, email)
        if tenant_slug:
            users = [user for user in users if user.tenant.slug == tenant_slug]
        if not users:
            raise click.ClickException(f"No user with email {email}")
        if len(users) > 1:
            slugs = ", ".join(user.tenant.slug for user in users)
            raise click.ClickException(f"{email} exists in several tenants ({slugs}); pass --tenant")

        user = users[0]
        if password:
            try:
                auth_service.ensure_password_policy(password)
            except InvalidInputError as e:
                raise click.ClickException(e.detail)
            user.hashed_password = get_password_hash(password)

        user.status = UserStatus.ACTIVE
        user.email_verified = True
        user.failed_login_attempts = 0
        user.locked_until = None
        db.commit()

        logger.info(f"Account repaired from CLI: user={user.id}", extra={"user_id": user.id, "tenant_id": user.tenant_id})
        click.echo(f"User {email} is active, unlocked and verified.")
        if password:
            click.echo("Password updated.")


@cli.command("cleanup-sessions")
def cleanup_sessions():
    """Delete expired and revoked sessions."""
    with db_session() as db:
        removed = auth_service.cleanup_expired_sessions(db)
    click.echo(f"Removed {removed} session(s).")


@cli.command("drop-all-data")
@click.option("--yes", is_flag=True, help="Confirm that every table should be dropped.")
def drop_all_data(yes):
    """Drop every table. Irreversible."""
    if not yes:
        raise click.ClickException("Refusing to drop data without --yes")
    if get_settings().ENVIRONMENT == "production":
        raise click.ClickException("drop-all-data is disabled in production")
    try:
        drop_db()
    except SQLAlchemyError as e:
        logger.error(f"drop-all-data failed: {e}", exc_info=True)
        raise click.ClickException(f"Could not drop tables: {e}")
    click.echo("All tables dropped.")


if __name__ == "__main__":
    cli()
