"""
Pytest configuration file.

Ensures the repo root is on sys.path so that 'import src...' works, and
provides an in-memory HaasOnline server for workflow-level tests.
"""
import copy
import json
import sys
from pathlib import Path

import pytest

# Add the repo root to sys.path
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.venues.haas_client import HaasAuthenticationError, classify_server_error  # noqa: E402
from src.venues.haas_session import authenticate  # noqa: E402


TEST_EMAIL = "trader@example.com"
TEST_PASSWORD = "correct-horse"

# Form fields UPDATE_LAB_DETAILS maps onto lab keys; anything else is stored verbatim
_UPDATE_FORM_KEYS = {"channel", "labid", "name", "type", "config", "settings", "parameters"}


class FakeHaasServer:
    """
    In-memory stand-in for the server, implementing TransportExecutor.

    Keeps markets, scripts, accounts, labs and backtest rows in dicts and
    answers the same channels the client uses. Labs that are started move
    to COMPLETED after `polls_until_complete` GET_LAB_DETAILS calls.
    """

    def __init__(self):
        self.users = {TEST_EMAIL: TEST_PASSWORD}
        self.markets = [
            {"PS": "BINANCE", "P": "BTC", "S": "USDT"},
            {"PS": "BINANCE", "P": "ETH", "S": "USDT"},
            {"PS": "KRAKEN", "P": "BTC", "S": "EUR"},
        ]
        self.scripts = [
            {"SID": "s1", "SN": "RSI Sweep", "SD": "", "ST": 0, "D": ["lib-rsi"]},
            {"SID": "s2", "SN": "MACD", "SD": "", "ST": 0, "D": []},
        ]
        self.accounts = [
            {"AID": "a1", "N": "Sim Binance", "EC": "BINANCE", "S": True},
        ]
        self.labs = {}
        self.results = {}
        self.valid_keys = set()
        self.calls = []
        self.polls_until_complete = 2
        self.final_status = 3
        self.clock = 1_700_000_000
        self._lab_counter = 0
        self._polls = {}

    def _tick(self):
        self.clock += 1
        return self.clock

    def expire_sessions(self):
        self.valid_keys.clear()

    def add_results(self, lab_id, count, report=None):
        self.results[lab_id] = [
            {
                "RID": i,
                "BID": f"bt-{i}",
                "NG": i // 10,
                "NP": i % 10,
                "ST": 0,
                "SE": {},
                "P": {"Length": 10 + i},
                "S": {"profit": float(i)},
                "CR": report if report is not None else {"profit": float(i), "trades": i * 2},
            }
            for i in range(count)
        ]

    def execute(self, session, method, path, params):
        channel = params.get("channel")
        self.calls.append((method, path, channel, dict(params)))

        if session is not None and session.interface_key not in self.valid_keys:
            raise HaasAuthenticationError(
                f"Server rejected {channel}: Not logged in", operation=channel
            )

        handler = getattr(self, f"_{channel.lower()}")
        return copy.deepcopy(handler(params))

    def _reject(self, message, channel):
        raise classify_server_error(message, channel)

    # UserAPI
    def _login_with_credentials(self, params):
        if self.users.get(params["email"]) != params["password"]:
            self._reject("Incorrect email or password", "LOGIN_WITH_CREDENTIALS")
        return None

    def _login_with_one_time_code(self, params):
        self.valid_keys.add(params["interfacekey"])
        return {"UserId": "user-1"}

    # PriceAPI
    def _marketlist(self, params):
        source = params.get("pricesource")
        if source is None:
            return self.markets
        return [m for m in self.markets if m["PS"] == source]

    # HaasScriptAPI / AccountAPI
    def _get_all_script_items(self, params):
        return self.scripts

    def _get_accounts(self, params):
        return self.accounts

    # LabsAPI
    def _lab(self, lab_id, channel):
        if lab_id not in self.labs:
            self._reject(f"Lab {lab_id} not found", channel)
        return self.labs[lab_id]

    def _create_lab(self, params):
        if params["scriptid"] not in {s["SID"] for s in self.scripts}:
            self._reject("Invalid script id", "CREATE_LAB")
        if params["accountid"] not in {a["AID"] for a in self.accounts}:
            self._reject("Invalid account id", "CREATE_LAB")

        self._lab_counter += 1
        lab_id = f"lab-{self._lab_counter}"
        now = self._tick()
        self.labs[lab_id] = {
            "LID": lab_id,
            "SID": params["scriptid"],
            "N": params["name"],
            "T": 0,
            "S": 0,
            "C": {"MP": 10, "MG": 100, "ME": 3, "MR": 40.0, "AR": 25.0},
            "ST": {
                "accountId": params["accountid"],
                "marketTag": params["market"],
                "interval": params["interval"],
                "chartStyle": params["style"],
            },
            "P": [{"K": "Length", "O": [10, 20, 30]}],
            "CA": now,
            "UA": now,
            "SA": 0,
            "SB": 0,
            "CB": 0,
            "CM": "",
            "RS": 0,
        }
        return self.labs[lab_id]

    def _start_lab_execution(self, params):
        lab = self._lab(params["labid"], "START_LAB_EXECUTION")
        lab["S"] = 2
        lab["SA"] = self._tick()
        lab["SB"] = 100
        self._polls[lab["LID"]] = 0
        return lab

    def _cancel_lab_execution(self, params):
        lab = self._lab(params["labid"], "CANCEL_LAB_EXECUTION")
        lab["S"] = 4
        lab["CM"] = "Cancelled by user"
        return None

    def _get_lab_details(self, params):
        lab = self._lab(params["labid"], "GET_LAB_DETAILS")
        if lab["S"] == 2:
            self._polls[lab["LID"]] += 1
            if self._polls[lab["LID"]] >= self.polls_until_complete:
                lab["S"] = self.final_status
                lab["CB"] = lab["SB"]
        return lab

    def _update_lab_details(self, params):
        lab = self._lab(params["labid"], "UPDATE_LAB_DETAILS")
        lab["N"] = params["name"]
        lab["T"] = params["type"]
        lab["C"] = json.loads(params["config"])
        lab["ST"] = json.loads(params["settings"])
        lab["P"] = json.loads(params["parameters"])
        for key in params.keys() - _UPDATE_FORM_KEYS:
            lab[key] = params[key]
        lab["UA"] = self._tick()
        return lab

    def _get_backtest_result_page(self, params):
        self._lab(params["labid"], "GET_BACKTEST_RESULT_PAGE")
        rows = self.results.get(params["labid"], [])
        offset = params["nextpageid"]
        length = params["pagelength"]
        page = rows[offset:offset + length]
        next_page = offset + length if offset + length < len(rows) else -1
        return {"I": page, "NP": next_page}


@pytest.fixture
def fake_server():
    """Fresh in-memory server per test."""
    return FakeHaasServer()


@pytest.fixture
def session(fake_server):
    """Session authenticated against the fake server."""
    return authenticate(
        "127.0.0.1", 8090, "http", TEST_EMAIL, TEST_PASSWORD, transport=fake_server
    )
