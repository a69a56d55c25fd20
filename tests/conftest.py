import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from storefront import ledger
from storefront.config import Settings, get_settings
from storefront.db import get_session, init_db
from storefront.errors import DeliveryError, GatewayError
from storefront.gateway import get_gateway
from storefront.mailer import get_mailer
from storefront.main import app
from storefront.models import Address, Product, Role, User

GATEWAY_SECRET = "rzp_test_secret"
HASH_SECRET = "test-hash-secret"
ADMIN_EMAIL = "admin@shop.test"


class FakeGateway:
    def __init__(self):
        self.calls = []
        self.fail = False

    async def create_intent(self, amount_minor, currency, receipt_id):
        self.calls.append((amount_minor, currency, receipt_id))
        if self.fail:
            raise GatewayError("Payment gateway timed out")
        return f"order_test_{len(self.calls)}"


class FakeMailer:
    def __init__(self):
        self.login_codes = []
        self.notices = []
        self.fail = False

    async def send_login_code(self, to_email, code, ttl_minutes):
        self.login_codes.append((to_email, code))

    async def send_contact_notice(self, to_email, name, sender, message):
        if self.fail:
            raise DeliveryError("Email provider unreachable")
        self.notices.append((to_email, sender, message))


class Factory:
    def __init__(self, session: Session):
        self.session = session

    def user(self, email="buyer@shop.test", points=0, role=Role.user) -> User:
        user = User(email=email, role=role, spoon_points=points)
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def product(self, new_price, name="Masala Chai", available=True) -> Product:
        product = Product(name=name, new_price=new_price, old_price=new_price, available=available)
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)
        return product

    def address(self, user_id) -> Address:
        address = Address(
            user_id=user_id,
            full_name="Asha Rao",
            phone_number="9000000000",
            area="Indiranagar",
            city="Bengaluru",
            state="KA",
            pincode="560038",
        )
        self.session.add(address)
        self.session.commit()
        self.session.refresh(address)
        return address

    def coupon(self, code, reward_type, reward_value):
        ledger.insert_coupons(
            self.session, [{"code": code, "reward_type": reward_type, "reward_value": reward_value}]
        )

    def claimed(self, user_id, code, reward_type, reward_value):
        self.coupon(code, reward_type, reward_value)
        return ledger.claim(self.session, code, user_id)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        hash_secret=HASH_SECRET,
        admin_emails={ADMIN_EMAIL},
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=GATEWAY_SECRET,
        currency="INR",
        cod_fee=0,
        discount_includes_cod_fee=False,
        contact_email="owner@shop.test",
    )


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def make(session):
    return Factory(session)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(engine, settings, gateway, mailer):
    def _session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()
