import pytest
from marketplace.catalogue import InMemoryCatalog, reset_catalog, set_catalog
from marketplace.gateway import FakeGateway, reset_gateway, set_gateway
from marketplace.inventory.ledger import InventoryLedger
from marketplace.notifications import LoggingNotifier, reset_notifier, set_notifier
from marketplace.requester import Requester
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def marketplace_bed():
    from marketplace.domain import marketplace

    bed = DomainFixture(marketplace)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(marketplace_bed):
    with marketplace_bed.domain_context():
        yield


@pytest.fixture
def ledger():
    return InventoryLedger()


@pytest.fixture(autouse=True)
def gateway():
    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture(autouse=True)
def catalog():
    memory = InMemoryCatalog(ledger=InventoryLedger())
    set_catalog(memory)
    yield memory
    reset_catalog()


@pytest.fixture(autouse=True)
def notifier():
    logging_notifier = LoggingNotifier()
    set_notifier(logging_notifier)
    yield logging_notifier
    reset_notifier()


@pytest.fixture
def customer():
    return Requester(customer_id="cust-001", email="player@example.com")


@pytest.fixture
def plus_customer():
    return Requester(customer_id="cust-plus", is_plus_member=True, email="plus@example.com")


@pytest.fixture
def guest():
    return Requester(session_id="sess-guest-001")


@pytest.fixture
def stocked_game(catalog, ledger):
    """A limited game with three activation codes and a 10% plus discount."""
    catalog.register(
        "game-001",
        "Starfall Odyssey",
        base_price="10.00",
        plus_discount_pct=10,
        inventory_mode="limited",
    )
    ledger.stock("game-001", mode="limited", codes=["SFO-AAAA", "SFO-BBBB", "SFO-CCCC"])
    return "game-001"


@pytest.fixture
def gift_card(catalog, ledger):
    """An unlimited gift card on sale."""
    catalog.register(
        "gift-025",
        "Gift Card 25",
        base_price="25.00",
        sale_price="22.50",
        inventory_mode="unlimited",
    )
    ledger.stock("gift-025", mode="unlimited")
    return "gift-025"
