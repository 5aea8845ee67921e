from types import SimpleNamespace
from uuid import uuid4


class FakeTimer:
    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Virtual clock: timers only fire when the test advances time."""

    def __init__(self):
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay, callback):
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.timers.remove(timer)
            self.now = timer.due
            timer.callback()
        self.now = target

    @property
    def active(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


class QueuedSpawner:
    """Holds spawned coroutines until the test runs them."""

    def __init__(self):
        self.queue: list[tuple[str, object]] = []
        self.names: list[str] = []
        self.errors: list[Exception] = []

    def spawn(self, coro, name=None):
        self.queue.append((name, coro))
        self.names.append(name)

    async def run_all(self) -> None:
        while self.queue:
            _, coro = self.queue.pop(0)
            try:
                await coro
            except Exception as e:
                self.errors.append(e)

    async def drain(self, timeout=None) -> None:
        await self.run_all()

    def discard(self) -> None:
        for _, coro in self.queue:
            coro.close()
        self.queue.clear()


class FakeFacebook:
    """Records outbound Send API calls in order."""

    def __init__(self, send_ok: bool = True):
        self.send_ok = send_ok
        self.calls: list[tuple] = []

    async def send_text(self, recipient_id, text, page_id=None):
        self.calls.append(("text", recipient_id, text))
        return self.send_ok

    async def send_typing(self, recipient_id, on=True, page_id=None):
        self.calls.append(("typing", recipient_id, on))
        return self.send_ok

    async def send_generic_template(self, recipient_id, elements, page_id=None):
        self.calls.append(("cards", recipient_id, elements))
        return self.send_ok

    async def send_media_attachments(self, recipient_id, media_urls, page_id=None):
        self.calls.append(("media", recipient_id, list(media_urls)))
        return self.send_ok

    async def get_user_profile(self, user_id, page_id=None):
        return None

    @property
    def texts(self) -> list[str]:
        return [call[2] for call in self.calls if call[0] == "text"]

    def kinds(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeGate:
    def __init__(self, active: bool = False):
        self.active = active
        self.checked: list[str] = []

    async def is_active(self, sender_id):
        self.checked.append(sender_id)
        return self.active


def make_payment_method(name="GCash", account_name="Juan Dela Cruz", account_number="09171234567", qr_code_url=None):
    return SimpleNamespace(
        id=uuid4(), name=name, account_name=account_name, account_number=account_number, qr_code_url=qr_code_url
    )


def make_product(name="Classic Tee", price=499, description="Soft cotton shirt", image_url=None):
    return SimpleNamespace(id=uuid4(), name=name, price=price, description=description, image_url=image_url)


def make_property(
    title="Azure Condo 2BR",
    price=4500000,
    address="Paranaque City",
    bedrooms=2,
    bathrooms=1,
    status="for_sale",
    image_url=None,
):
    return SimpleNamespace(
        id=uuid4(),
        title=title,
        price=price,
        address=address,
        bedrooms=bedrooms,
        bathrooms=bathrooms,
        status=status,
        image_url=image_url,
    )

