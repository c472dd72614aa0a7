import pytest
from datetime import timedelta
import uuid

from quoteflow import create_app
from quoteflow.database import db_session, get_session, create_all, drop_all
from quoteflow.models import (
    Tenant, AppUser, UserTenant, Supplier, Product, ProductPackaging
)
from quoteflow.services import quote_service, invitation_service
from quoteflow.utils.clock import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing (in-memory SQLite)."""
    return create_app('config.TestConfig')


@pytest.fixture(autouse=True)
def _database(app):
    """Fresh schema for every test, inside an application context."""
    ctx = app.app_context()
    ctx.push()
    create_all()
    yield
    db_session.remove()
    drop_all()
    ctx.pop()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session used by the services under test."""
    session = get_session()
    yield session
    session.rollback()


def _tenant(session, label):
    suffix = str(uuid.uuid4())[:8]
    tenant = Tenant(slug=f'{label}-{suffix}', name=f'{label} {suffix}', active=True)
    session.add(tenant)
    session.commit()
    return tenant


def _user(session, tenant, role='OWNER'):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(email=f'{role.lower()}-{suffix}@test.com', full_name=f'{role.title()} User', active=True)
    session.add(user)
    session.flush()
    session.add(UserTenant(user_id=user.id, tenant_id=tenant.id, role=role, active=True))
    session.commit()
    return user


@pytest.fixture(scope='function')
def tenant1(session):
    return _tenant(session, 'buyer-one')


@pytest.fixture(scope='function')
def tenant2(session):
    """Second tenant for isolation tests."""
    return _tenant(session, 'buyer-two')


@pytest.fixture(scope='function')
def user1(session, tenant1):
    return _user(session, tenant1, 'OWNER')


@pytest.fixture(scope='function')
def user2(session, tenant2):
    return _user(session, tenant2, 'OWNER')


@pytest.fixture(scope='function')
def make_user(session):
    """Factory: user with a given role in a tenant."""
    def factory(tenant, role):
        return _user(session, tenant, role)
    return factory


@pytest.fixture(scope='function')
def supplier_a(session, tenant1):
    supplier = Supplier(tenant_id=tenant1.id, name='Proveedor A', email='a@proveedor.test')
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture(scope='function')
def supplier_b(session, tenant1):
    supplier = Supplier(tenant_id=tenant1.id, name='Proveedor B', email='b@proveedor.test')
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture(scope='function')
def supplier_no_email(session, tenant1):
    supplier = Supplier(tenant_id=tenant1.id, name='Proveedor sin mail', email=None)
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture(scope='function')
def supplier_tenant2(session, tenant2):
    supplier = Supplier(tenant_id=tenant2.id, name='Proveedor T2', email='t2@proveedor.test')
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture(scope='function')
def product_tenant1(session, tenant1):
    product = Product(tenant_id=tenant1.id, name='Yerba 1kg', sku='YER-1', active=True)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product2_tenant1(session, tenant1):
    product = Product(tenant_id=tenant1.id, name='Azúcar 1kg', sku='AZU-1', active=True)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product_tenant2(session, tenant2):
    product = Product(tenant_id=tenant2.id, name='Producto T2', sku='T2-1', active=True)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def packaging(session, product_tenant1):
    package = ProductPackaging(product_id=product_tenant1.id, name='Caja x 12', quantity=12, is_default=True)
    session.add(package)
    session.commit()
    return package


@pytest.fixture(scope='function')
def future_deadline():
    return utcnow() + timedelta(days=7)


@pytest.fixture(scope='function')
def draft_quote(session, tenant1, user1, product_tenant1, future_deadline):
    """Draft quote with one item (qty 10)."""
    quote = quote_service.create_quote(
        session, tenant1.id, title='Compra mensual', deadline=future_deadline, user_id=user1.id
    )
    quote_service.add_quote_item(quote.id, session, tenant1.id, product_id=product_tenant1.id, requested_qty='10')
    return quote


@pytest.fixture(scope='function')
def open_quote(session, tenant1, user1, draft_quote, supplier_a, supplier_b):
    """
    Open quote with one item and suppliers A and B invited.

    Returns a dict of ids and tokens, which stay valid after requests
    recycle the scoped session.
    """
    inv_a, _ = invitation_service.issue_invitation(draft_quote.id, supplier_a.id, session, tenant1.id)
    inv_b, _ = invitation_service.issue_invitation(draft_quote.id, supplier_b.id, session, tenant1.id)
    quote_service.open_quote(draft_quote.id, session, tenant1.id, user_id=user1.id)
    return {
        'tenant_id': tenant1.id,
        'user_id': user1.id,
        'quote_id': draft_quote.id,
        'item_id': draft_quote.items[0].id,
        'product_id': draft_quote.items[0].product_id,
        'supplier_a': supplier_a.id,
        'supplier_b': supplier_b.id,
        'token_a': inv_a.public_token,
        'token_b': inv_b.public_token,
        'invitation_a': inv_a.id,
        'invitation_b': inv_b.id,
    }


@pytest.fixture(scope='function')
def authenticated_client(client, user1, tenant1):
    """Create authenticated client for tenant1 (OWNER)."""
    with client.session_transaction() as sess:
        sess['user_id'] = user1.id
        sess['tenant_id'] = tenant1.id
    return client


@pytest.fixture(scope='function')
def login(client):
    """Factory: authenticate the test client as a given user/tenant."""
    def do_login(user_id, tenant_id):
        with client.session_transaction() as sess:
            sess['user_id'] = user_id
            sess['tenant_id'] = tenant_id
        return client
    return do_login
