"""
Tests for the subscription status handler.
"""

import json
from unittest.mock import patch

import stripe

from api.subscription_status import handler

SUBSCRIPTION = {
    "id": "sub_123",
    "status": "active",
    "current_period_end": 1767225600,
    "cancel_at_period_end": False,
    "cancel_at": None,
    "canceled_at": None,
    "ended_at": None,
    "created": 1764547200,
}


def _get(make_event, **kwargs):
    return make_event(method="GET", **kwargs)


class TestSubscriptionStatus:
    def test_known_subscription(self, settings, mock_supabase, make_event, user):
        user["user_metadata"].update(stripe_subscription_id="sub_123", plan_interval="year")

        with patch("stripe.Subscription.retrieve", return_value=SUBSCRIPTION) as mock_retrieve:
            result = handler(_get(make_event), {}, settings=settings)

        assert result["statusCode"] == 200
        body = json.loads(result["body"])
        assert body["subscription_id"] == "sub_123"
        assert body["active"] is True
        assert body["current_period_end"] == "2026-01-01T00:00:00Z"
        assert body["plan_interval"] == "year"
        mock_retrieve.assert_called_once_with("sub_123")

    def test_retrieve_failure_is_500(self, settings, mock_supabase, make_event, user):
        user["user_metadata"]["stripe_subscription_id"] = "sub_123"

        with patch("stripe.Subscription.retrieve", side_effect=stripe.APIConnectionError("network down")):
            result = handler(_get(make_event), {}, settings=settings)

        assert result["statusCode"] == 500
        assert json.loads(result["body"])["error"]["code"] == "stripe_error"

    def test_infers_latest_from_customer(self, settings, mock_supabase, make_event, user):
        user["user_metadata"]["stripe_customer_id"] = "cus_123"

        with patch("stripe.Subscription.list", return_value={"data": [SUBSCRIPTION]}) as mock_list:
            result = handler(_get(make_event), {}, settings=settings)

        body = json.loads(result["body"])
        assert body["subscription_id"] == "sub_123"
        assert mock_list.call_args.kwargs["customer"] == "cus_123"
        assert mock_list.call_args.kwargs["limit"] == 1

    def test_list_failure_falls_through_to_empty(self, settings, mock_supabase, make_event, user):
        user["user_metadata"]["stripe_customer_id"] = "cus_123"

        with patch("stripe.Subscription.list", side_effect=stripe.APIConnectionError("network down")):
            result = handler(_get(make_event), {}, settings=settings)

        assert result["statusCode"] == 200
        assert json.loads(result["body"])["subscription_id"] is None

    def test_free_user(self, settings, mock_supabase, make_event):
        with patch("stripe.Subscription.retrieve") as mock_retrieve, patch("stripe.Subscription.list") as mock_list:
            result = handler(_get(make_event), {}, settings=settings)

        body = json.loads(result["body"])
        assert body["subscription_id"] is None
        assert body["active"] is False
        mock_retrieve.assert_not_called()
        mock_list.assert_not_called()

    def test_requires_token(self, settings, mock_supabase, make_event):
        result = handler(_get(make_event, token=None), {}, settings=settings)

        assert result["statusCode"] == 401

    def test_post_not_allowed(self, settings, mock_supabase, make_event):
        result = handler(make_event(method="POST", body={}), {}, settings=settings)

        assert result["statusCode"] == 405
