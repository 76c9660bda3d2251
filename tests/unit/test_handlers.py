"""
Unit tests for the three Lambda entry points
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from conftest import load_handler, make_response

from dam_renditions.lambda_error_handler import FinalizeError
from dam_renditions.models import RenditionResult
from dam_renditions.pipeline import IngestionOutcome

webhook = load_handler("lambdas/webhooks/dam_webhook/index.py", "dam_webhook_index")
finalize_upload = load_handler("lambdas/webhooks/finalize_upload/index.py", "finalize_upload_index")
scheduled = load_handler(
    "lambdas/back_end/scheduled_finalizer/index.py", "scheduled_finalizer_index"
)


def api_event(body, base64_encoded=False):
    return {
        "httpMethod": "POST",
        "path": "/webhook",
        "body": body,
        "isBase64Encoded": base64_encoded,
        "requestContext": {"requestId": "req-123"},
    }


def sns_body(message, kind="Notification"):
    return json.dumps({"Type": kind, "Message": json.dumps(message)})


@pytest.fixture
def pipeline():
    mock = MagicMock()
    with patch.object(webhook, "_pipeline", mock), patch.object(
        finalize_upload, "_pipeline", mock
    ), patch.object(scheduled, "_pipeline", mock):
        yield mock


class TestDamWebhook:
    def test_notification_is_processed(self, pipeline, lambda_context):
        pipeline.process.return_value = IngestionOutcome(
            media_id="m1",
            results=[RenditionResult("crop300", "photo__crop300.jpg", "enqueued", upload_id="up-1")],
        )

        response = webhook.lambda_handler(
            api_event(sns_body({"media_id": "m1", "media": {"name": "photo.jpg"}})), lambda_context
        )

        assert response["statusCode"] == 200
        assert response["headers"]["Access-Control-Allow-Origin"] == "*"
        body = json.loads(response["body"])
        assert body["mediaId"] == "m1"
        assert body["successCount"] == 1
        notification = pipeline.process.call_args[0][0]
        assert notification.media_id == "m1"
        assert notification.media_name == "photo.jpg"

    def test_malformed_body_is_plain_text_400(self, pipeline, lambda_context):
        response = webhook.lambda_handler(api_event("{not json"), lambda_context)

        assert response["statusCode"] == 400
        assert response["headers"]["Content-Type"] == "text/plain"
        assert response["body"] == "Invalid JSON"
        pipeline.process.assert_not_called()

    def test_missing_media_id_is_400(self, pipeline, lambda_context):
        response = webhook.lambda_handler(api_event(sns_body({"event": "asset_bank.media.create"})), lambda_context)

        assert response["statusCode"] == 400
        pipeline.process.assert_not_called()

    def test_subscription_confirmation(self, pipeline, lambda_context):
        pipeline.client.confirm_subscription.return_value = True
        body = json.dumps({"Type": "SubscriptionConfirmation", "SubscribeURL": "https://sns.example.com/confirm"})

        response = webhook.lambda_handler(api_event(body), lambda_context)

        assert response["statusCode"] == 200
        assert json.loads(response["body"])["confirmed"] is True
        pipeline.client.confirm_subscription.assert_called_once_with("https://sns.example.com/confirm")
        pipeline.process.assert_not_called()

    def test_other_envelope_types_are_acknowledged(self, pipeline, lambda_context):
        response = webhook.lambda_handler(
            api_event(json.dumps({"Type": "UnsubscribeConfirmation"})), lambda_context
        )

        assert response["statusCode"] == 200
        pipeline.process.assert_not_called()

    def test_warmer_ping(self, pipeline, lambda_context):
        assert webhook.lambda_handler({"lambda_warmer": True}, lambda_context) == {"warmed": True}
        pipeline.process.assert_not_called()

    def test_unexpected_error_is_json_500(self, pipeline, lambda_context):
        pipeline.process.side_effect = RuntimeError("boom")

        response = webhook.lambda_handler(api_event(sns_body({"media_id": "m1"})), lambda_context)

        assert response["statusCode"] == 500
        body = json.loads(response["body"])
        assert body["error"] == "RuntimeError"
        assert body["message"] == "boom"

    def test_missing_configuration_is_500(self, lambda_context, monkeypatch):
        monkeypatch.delenv("DAM_BASE_URL", raising=False)
        monkeypatch.setattr(webhook, "_pipeline", None)

        response = webhook.lambda_handler(api_event(sns_body({"media_id": "m1"})), lambda_context)

        assert response["statusCode"] == 500
        assert json.loads(response["body"])["error"] == "ConfigurationError"


class TestConfirmSubscription:
    @patch("dam_renditions.dam_client.requests.get")
    def test_plain_get_on_subscribe_url(self, mock_get, config):
        from dam_renditions.dam_client import DamClient

        mock_get.return_value = make_response(200, content=b"<ConfirmSubscriptionResponse/>")

        assert DamClient(config, session=MagicMock(headers={})).confirm_subscription(
            "https://sns.example.com/confirm"
        )
        mock_get.assert_called_once_with("https://sns.example.com/confirm", timeout=30.0)


class TestFinalizeUpload:
    def test_descriptors_are_finalized(self, pipeline, lambda_context):
        pipeline.finalize_uploads.return_value = {
            "message": "Finalized 1 of 1 uploads",
            "successCount": 1,
            "failureCount": 0,
            "results": [],
        }
        body = json.dumps(
            {
                "uploads": [
                    {
                        "uploadId": "up-1",
                        "targetid": "t",
                        "s3_filename": "k",
                        "filename": "photo__crop300.jpg",
                    }
                ]
            }
        )

        response = finalize_upload.lambda_handler(api_event(body), lambda_context)

        assert response["statusCode"] == 200
        assert json.loads(response["body"])["successCount"] == 1
        descriptors = pipeline.finalize_uploads.call_args[0][0]
        assert descriptors[0].uploadId == "up-1"
        assert descriptors[0].totalChunks == 1

    def test_missing_uploads_is_plain_text_400(self, pipeline, lambda_context):
        response = finalize_upload.lambda_handler(api_event(json.dumps({})), lambda_context)

        assert response["statusCode"] == 400
        assert response["headers"]["Content-Type"] == "text/plain"
        assert "uploads" in response["body"]
        pipeline.finalize_uploads.assert_not_called()


class TestScheduledFinalizer:
    def test_drain_summary(self, pipeline, lambda_context):
        pipeline.drain.return_value = {"message": "No pending uploads", "processed": 0}
        event = {"source": "aws.events", "detail-type": "Scheduled Event", "id": "evt-1", "resources": []}

        response = scheduled.lambda_handler(event, lambda_context)

        assert response["statusCode"] == 200
        assert json.loads(response["body"])["message"] == "No pending uploads"
        assert "Access-Control-Allow-Origin" not in response["headers"]

    def test_drain_error_is_500(self, pipeline, lambda_context):
        pipeline.drain.side_effect = FinalizeError("queue unreadable")

        response = scheduled.lambda_handler({}, lambda_context)

        assert response["statusCode"] == 500
