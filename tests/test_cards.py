import pytest

from pagebot.services.card_service import (
    CardSender,
    build_payment_element,
    build_product_element,
    build_property_element,
    build_property_referral_element,
    format_peso,
    truncate,
)
from tests.fakes import FakeFacebook, make_payment_method, make_product, make_property

BASE_URL = "https://shop.example.com"


class TestFormatting:
    def test_format_peso(self):
        assert format_peso(1499) == "₱1,499.00"
        assert format_peso("4500000", decimals=0) == "₱4,500,000"

    def test_format_peso_empty(self):
        assert format_peso(None) is None
        assert format_peso(0) is None
        assert format_peso("") is None

    def test_truncate(self):
        assert truncate("short") == "short"
        long_text = "x" * 60
        assert truncate(long_text) == "x" * 47 + "..."
        assert len(truncate(long_text)) == 50


class TestElements:
    def test_product_element(self):
        product = make_product(image_url="https://cdn.example.com/tee.jpg")
        element = build_product_element(product, BASE_URL)

        assert element["title"] == "Classic Tee"
        assert element["subtitle"] == "₱499.00 • Soft cotton shirt"
        assert element["image_url"] == "https://cdn.example.com/tee.jpg"
        assert element["buttons"] == [
            {
                "type": "web_url",
                "url": f"{BASE_URL}/product/{product.id}",
                "title": "View Product",
                "webview_height_ratio": "tall",
            }
        ]

    def test_product_without_price_or_image(self):
        element = build_product_element(make_product(price=None, description=None), BASE_URL)
        assert element["subtitle"] == "Price upon request"
        assert "image_url" not in element

    def test_property_element(self):
        prop = make_property()
        element = build_property_element(prop, BASE_URL)

        assert element["subtitle"] == "₱4,500,000\nParanaque City • 2 Beds • 1 Baths"
        assert [b["title"] for b in element["buttons"]] == ["View Details", "💬 Inquire"]
        assert element["buttons"][1]["payload"] == f"INQUIRE_PROP_{prop.id}"

    def test_payment_element(self):
        method = make_payment_method(qr_code_url="https://cdn.example.com/qr.png")
        element = build_payment_element(method)

        assert element["title"] == "GCash"
        assert element["subtitle"] == "Account: Juan Dela Cruz\nNumber: 09171234567"
        assert element["image_url"] == "https://cdn.example.com/qr.png"
        assert element["buttons"][0] == {
            "type": "postback",
            "title": "✅ I'll pay here",
            "payload": f"PAY_{method.id}",
        }
        assert element["buttons"][1]["title"] == "📱 View QR Code"

    def test_payment_element_without_details(self):
        element = build_payment_element(make_payment_method(account_name=None, account_number=None))
        assert element["subtitle"] == "Payment method available"
        assert len(element["buttons"]) == 1

    def test_property_referral_element(self):
        prop = make_property(bathrooms=None)
        element = build_property_referral_element(prop, BASE_URL)

        assert element["subtitle"] == "₱4,500,000 • Paranaque City • for sale • 2 BR"
        assert [b["title"] for b in element["buttons"]] == ["View Property", "I want to inquire"]

    def test_property_referral_price_on_request(self):
        element = build_property_referral_element(make_property(price=None, address=None, status=None), BASE_URL)
        assert element["subtitle"] == "Price on request • 2 BR • 1 BA"


class TestCardSender:
    @pytest.mark.asyncio
    async def test_sends_carousel(self, facebook):
        sender = CardSender(facebook, BASE_URL + "/")
        sent = await sender.send_product_cards("user_1", [make_product(), make_product(name="Hoodie")])

        assert sent is True
        kind, recipient, elements = facebook.calls[0]
        assert kind == "cards"
        assert [e["title"] for e in elements] == ["Classic Tee", "Hoodie"]
        assert elements[0]["buttons"][0]["url"].startswith(f"{BASE_URL}/product/")

    @pytest.mark.asyncio
    async def test_caps_at_ten_elements(self, facebook):
        sender = CardSender(facebook, BASE_URL)
        await sender.send_property_cards("user_1", [make_property() for _ in range(12)])
        assert len(facebook.calls[0][2]) == 10

    @pytest.mark.asyncio
    async def test_empty_list_is_not_sent(self, facebook):
        sender = CardSender(facebook, BASE_URL)
        assert await sender.send_payment_method_cards("user_1", []) is False
        assert facebook.calls == []

    @pytest.mark.asyncio
    async def test_failed_send_returns_false(self):
        sender = CardSender(FakeFacebook(send_ok=False), BASE_URL)
        assert await sender.send_payment_method_cards("user_1", [make_payment_method()]) is False
