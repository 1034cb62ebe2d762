"""Unit tests for text message endpoints."""
from softphone.core.exceptions import ProviderRequestFailed
from softphone.services.telephony.twiml import empty_messaging_twiml


class TestSendMessage:
    """Test POST /sms/send."""

    def test_send(self, test_client, fake_provider):
        """Test the text is sent from the configured number and echoed back."""
        response = test_client.post("/sms/send", json={"to": "5551234567", "body": "On my way"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == {
            "sid": fake_provider.messages[0].sid,
            "body": "On my way",
            "from": "+15550001111",
            "to": "+15551234567",
            "direction": "outbound",
            "status": "queued",
            "timestamp": "2024-05-01T12:00:00+00:00",
        }
        assert fake_provider.messages[0].to == "+15551234567"

    def test_send_is_broadcast(self, test_client):
        """Test every connected widget hears about the sent text."""
        with test_client.websocket_connect("/ws") as websocket:
            websocket.receive_json()

            test_client.post("/sms/send", json={"to": "+445551234567", "body": "Hello"})

            pushed = websocket.receive_json()
            assert pushed["event"] == "new-message"
            assert pushed["data"]["to"] == "+445551234567"
            assert pushed["data"]["direction"] == "outbound"

    def test_missing_fields(self, test_client, fake_provider):
        """Test both the number and the text are required."""
        for payload in ({"to": "5551234567"}, {"body": "Hello"}, {"to": "", "body": "Hello"}):
            response = test_client.post("/sms/send", json=payload)

            assert response.status_code == 400
            assert response.json() == {
                "success": False,
                "error": "Missing required parameters: to, body",
            }
        assert fake_provider.messages == []

    def test_provider_failure(self, test_client, fake_provider):
        """Test provider errors are a 500 carrying the provider message."""
        fake_provider.message_error = ProviderRequestFailed("The 'To' number is not a valid phone number.", code=21211)

        response = test_client.post("/sms/send", json={"to": "123", "body": "Hello"})

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "The 'To' number is not a valid phone number.",
        }


class TestIncomingMessage:
    """Test POST /sms/webhook."""

    def test_acknowledged_with_empty_twiml(self, test_client):
        """Test inbound texts are answered without a reply."""
        response = test_client.post(
            "/sms/webhook",
            data={"MessageSid": "SM1", "From": "+15559876543", "To": "+15550001111", "Body": "Hi"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert response.text == empty_messaging_twiml()
        assert "<Message" not in response.text

    def test_relayed_to_widgets(self, test_client):
        """Test inbound texts are pushed to every connected socket."""
        with test_client.websocket_connect("/ws") as websocket:
            websocket.receive_json()

            test_client.post(
                "/sms/webhook",
                data={
                    "MessageSid": "SM1",
                    "From": "+15559876543",
                    "To": "+15550001111",
                    "Body": "Hi",
                    "DateCreated": "2024-05-01T12:00:00Z",
                },
            )

            assert websocket.receive_json() == {
                "event": "new-message",
                "data": {
                    "sid": "SM1",
                    "body": "Hi",
                    "from": "+15559876543",
                    "to": "+15550001111",
                    "direction": "inbound",
                    "status": "received",
                    "timestamp": "2024-05-01T12:00:00Z",
                },
            }
