import os
import unittest
from unittest.mock import MagicMock, patch

import requests

from resumable_deployer.config import InvokerConfig
from resumable_deployer.errors import RemoteCallError
from resumable_deployer.invoker import HttpActionInvoker, Operation


def make_response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload if payload is not None else {}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(str(status_code))
    return response


def make_session(*responses):
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return session


class HttpActionInvokerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = InvokerConfig(
            endpoint="https://backend.example/api/",
            api_key="secret",
            poll_interval=0.5,
            confirmation_timeout=60,
            max_retries=3,
            retry_backoff=1.0,
        )
        self.operation = Operation(kind="deploy", payload={"artifact": "Pool"})
        sleep_patch = patch("resumable_deployer.invoker.http.time.sleep")
        self.sleep = sleep_patch.start()
        self.addCleanup(sleep_patch.stop)

    def test_requires_endpoint(self) -> None:
        with self.assertRaises(ValueError):
            HttpActionInvoker(InvokerConfig())

    def test_sets_auth_header(self) -> None:
        session = make_session()
        HttpActionInvoker(self.config, session=session)
        self.assertEqual(session.headers["Authorization"], "Bearer secret")

    def test_execute_submits_then_polls_until_confirmed(self) -> None:
        session = make_session(
            make_response(payload={"id": "op-1"}),
            make_response(payload={"status": "pending"}),
            make_response(
                payload={"status": "confirmed", "identifier": "0xabc", "metadata": {"tx": "0x99"}}
            ),
        )
        invoker = HttpActionInvoker(self.config, session=session)

        confirmation = invoker.execute(self.operation)

        self.assertEqual(confirmation.reference, "op-1")
        self.assertEqual(confirmation.identifier, "0xabc")
        self.assertEqual(confirmation.metadata, {"tx": "0x99"})
        first_call = session.request.call_args_list[0]
        self.assertEqual(first_call.args, ("POST", "https://backend.example/api/operations"))
        self.assertEqual(first_call.kwargs["json"]["kind"], "deploy")
        self.assertEqual(
            session.request.call_args_list[1].args,
            ("GET", "https://backend.example/api/operations/op-1"),
        )
        self.sleep.assert_called_once_with(0.5)

    def test_rejected_operation_raises(self) -> None:
        session = make_session(
            make_response(payload={"id": "op-1"}),
            make_response(payload={"status": "reverted", "error": "out of gas"}),
        )
        invoker = HttpActionInvoker(self.config, session=session)

        with self.assertRaises(RemoteCallError) as ctx:
            invoker.execute(self.operation)
        self.assertIn("out of gas", str(ctx.exception))
        self.assertEqual(ctx.exception.reference, "op-1")

    def test_confirmation_timeout(self) -> None:
        self.config.confirmation_timeout = 0
        session = make_session(
            make_response(payload={"id": "op-1"}),
            make_response(payload={"status": "pending"}),
        )
        invoker = HttpActionInvoker(self.config, session=session)

        with self.assertRaises(RemoteCallError) as ctx:
            invoker.execute(self.operation)
        self.assertIn("Timed out", str(ctx.exception))

    def test_submit_without_id_raises(self) -> None:
        invoker = HttpActionInvoker(self.config, session=make_session(make_response(payload={})))
        with self.assertRaises(RemoteCallError):
            invoker.submit(self.operation)

    def test_rate_limit_is_retried(self) -> None:
        session = make_session(
            make_response(status_code=429),
            make_response(payload={"id": "op-7"}),
        )
        invoker = HttpActionInvoker(self.config, session=session)

        handle = invoker.submit(self.operation)

        self.assertEqual(handle.reference, "op-7")
        self.sleep.assert_called_once_with(1.0)

    def test_rate_limit_gives_up_after_max_retries(self) -> None:
        session = make_session(*(make_response(status_code=429) for _ in range(3)))
        invoker = HttpActionInvoker(self.config, session=session)

        with self.assertRaises(RemoteCallError) as ctx:
            invoker.submit(self.operation)
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(session.request.call_count, 3)

    def test_http_error_is_wrapped(self) -> None:
        session = make_session(make_response(status_code=400, text="bad payload"))
        invoker = HttpActionInvoker(self.config, session=session)

        with self.assertRaises(RemoteCallError) as ctx:
            invoker.submit(self.operation)
        self.assertIn("HTTP 400", str(ctx.exception))
        self.assertFalse(ctx.exception.retryable)

    def test_network_errors_are_wrapped(self) -> None:
        session = make_session(requests.exceptions.ConnectionError("refused"))
        invoker = HttpActionInvoker(self.config, session=session)
        with self.assertRaises(RemoteCallError):
            invoker.submit(self.operation)

        session = make_session(requests.exceptions.Timeout("slow"))
        invoker = HttpActionInvoker(self.config, session=session)
        with self.assertRaises(RemoteCallError) as ctx:
            invoker.submit(self.operation)
        self.assertIn("timed out", str(ctx.exception))

    def test_invalid_json_is_wrapped(self) -> None:
        session = make_session(make_response(payload=ValueError("no json")))
        invoker = HttpActionInvoker(self.config, session=session)
        with self.assertRaises(RemoteCallError):
            invoker.submit(self.operation)

    def test_balance(self) -> None:
        session = make_session(
            make_response(payload={"balance": "12.5"}),
            make_response(payload={}),
        )
        invoker = HttpActionInvoker(self.config, session=session)

        self.assertEqual(invoker.balance("0xdeployer"), 12.5)
        self.assertIsNone(invoker.balance("0xdeployer"))

    @patch.dict(os.environ, {"HTTPS_PROXY": "http://127.0.0.1:7890"})
    def test_proxy_from_environment(self) -> None:
        session = make_session()
        HttpActionInvoker(self.config, session=session)
        self.assertEqual(session.proxies["https"], "http://127.0.0.1:7890")


if __name__ == "__main__":
    unittest.main()
