from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError

from plan.schema import ColumnSpec, Plan, SmokeCheck
from policies.options import PolicyOptions

from .tokens import ProbeIdentity, probe_identities

logger = logging.getLogger(__name__)

RLS_PRESETS = ("owner", "public_read", "team_scope")


def _api_url() -> str:
    return os.getenv("API_URL", "http://localhost:3000").rstrip("/")


def _auth_url() -> str:
    return os.getenv("AUTH_URL", "http://localhost:9999").rstrip("/")


def _functions_url() -> str:
    return os.getenv("FUNCTIONS_URL", "http://localhost:8787").rstrip("/")


def _verify_timeout_s() -> int:
    return int(os.getenv("VERIFY_TIMEOUT_S", "10"))


class VerificationProbeFailure(Exception):
    def __init__(self, failed: Sequence[str], errors: Sequence[str] = ()) -> None:
        self.failed = list(failed)
        self.errors = list(errors)
        summary = "; ".join(self.failed + self.errors) or "verification failed"
        super().__init__(summary)


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        try:
            return json.loads(self.body.decode("utf-8") or "null")
        except ValueError as exc:
            raise VerificationProbeFailure([f"response is not JSON (HTTP {self.status})"]) from exc


@dataclass
class VerifyResult:
    success: bool = False
    passed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RlsTarget:
    table: str
    options: PolicyOptions
    columns: Sequence[ColumnSpec] = ()


def rls_targets(plan: Plan) -> List[RlsTarget]:
    columns = {t.name: t.columns for t in plan.steps_of("table")}
    targets: List[RlsTarget] = []
    for step in plan.steps:
        if step.kind == "table" and step.table.policy is not None:
            options = step.table.policy.options()
            table = step.table.name
        elif step.kind == "policy":
            options = step.policy
            table = step.policy.table
        else:
            continue
        if options.preset in RLS_PRESETS:
            targets.append(RlsTarget(table, options, columns.get(table, ())))
    return targets


def sample_row(target: RlsTarget, identity: ProbeIdentity) -> Dict[str, Any]:
    owner_col = target.options.resolved_owner_col()
    org_col = target.options.resolved_org_col()
    row: Dict[str, Any] = {}
    for col in target.columns:
        if col.pk or col.default is not None:
            continue
        kind = col.type.lower()
        if col.name == owner_col:
            row[col.name] = identity.sub
        elif col.name == org_col:
            row[col.name] = identity.org_id
        elif "text" in kind or "char" in kind:
            row[col.name] = f"verify-{col.name}"
        elif "int" in kind or "numeric" in kind:
            row[col.name] = 1
        elif "bool" in kind:
            row[col.name] = True
        elif kind == "uuid":
            row[col.name] = identity.sub
    if owner_col and owner_col not in row:
        row[owner_col] = identity.sub
    if org_col and org_col not in row:
        row[org_col] = identity.org_id
    return row


class Verifier:
    """Probe a deployed stack: services, RLS boundaries, functions, smoke checks.

    Each probe category runs on its own so one unreachable service does not hide
    the results of the others.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        auth_url: Optional[str] = None,
        functions_url: Optional[str] = None,
        timeout_s: Optional[int] = None,
        jwt_secret: Optional[str] = None,
    ) -> None:
        self.api_url = (api_url or _api_url()).rstrip("/")
        self.auth_url = (auth_url or _auth_url()).rstrip("/")
        self.functions_url = (functions_url or _functions_url()).rstrip("/")
        self.timeout_s = timeout_s if timeout_s is not None else _verify_timeout_s()
        self.jwt_secret = jwt_secret

    def verify(self, plan: Plan) -> VerifyResult:
        result = VerifyResult()
        identities = probe_identities(self.jwt_secret)
        categories = [
            ("connectivity", lambda: self._check_connectivity(result)),
            ("rls", lambda: self._check_rls(plan, identities, result)),
            ("functions", lambda: self._check_functions(plan, result)),
            ("smoke", lambda: self._check_smoke(plan, identities, result)),
        ]
        for name, probe in categories:
            try:
                probe()
            except Exception as exc:
                logger.exception("verification category %s aborted", name)
                result.errors.append(f"{name}: {exc}")
        result.success = not result.failed and not result.errors
        logger.info(
            "verification finished passed=%d failed=%d errors=%d",
            len(result.passed), len(result.failed), len(result.errors),
        )
        return result

    def _send(
        self,
        method: str,
        url: str,
        body: Any = None,
        token: Optional[str] = None,
    ) -> HttpResponse:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urlrequest.Request(url=url, data=data, method=method, headers=headers)
        try:
            with urlrequest.urlopen(req, timeout=self.timeout_s) as resp:
                return HttpResponse(resp.status, resp.read())
        except HTTPError as exc:
            return HttpResponse(exc.code, exc.read())

    def _probe(self, result: VerifyResult, label: str, method: str, url: str, **kwargs: Any) -> Optional[HttpResponse]:
        try:
            return self._send(method, url, **kwargs)
        except (URLError, OSError) as exc:
            result.failed.append(f"{label}: not reachable ({exc})")
            return None

    def _check_connectivity(self, result: VerifyResult) -> None:
        services = [
            ("REST API", f"{self.api_url}/"),
            ("Auth", f"{self.auth_url}/health"),
            ("Functions gateway", f"{self.functions_url}/health"),
        ]
        for label, url in services:
            resp = self._probe(result, label, "GET", url)
            if resp is None:
                continue
            if resp.ok:
                result.passed.append(f"{label} connectivity")
            else:
                result.failed.append(f"{label}: HTTP {resp.status}")

    def _check_rls(self, plan: Plan, identities: tuple[ProbeIdentity, ProbeIdentity], result: VerifyResult) -> None:
        user_a, user_b = identities
        for target in rls_targets(plan):
            url = f"{self.api_url}/{target.table}"
            preset = target.options.preset
            if preset == "public_read":
                resp = self._probe(result, f"{target.table}: anonymous read", "GET", url)
                if resp is not None:
                    if resp.ok:
                        result.passed.append(f"{target.table}: anonymous read allowed")
                    else:
                        result.failed.append(f"{target.table}: anonymous read blocked (HTTP {resp.status})")
                resp = self._probe(
                    result, f"{target.table}: anonymous write", "POST", url,
                    body=sample_row(target, user_a),
                )
                if resp is not None:
                    if resp.ok:
                        result.failed.append(f"{target.table}: anonymous write accepted")
                    else:
                        result.passed.append(f"{target.table}: anonymous write rejected")
                resp = self._probe(
                    result, f"{target.table}: authenticated write", "POST", url,
                    body=sample_row(target, user_a), token=user_a.token,
                )
                if resp is not None:
                    if resp.ok:
                        result.passed.append(f"{target.table}: authenticated write allowed")
                    else:
                        result.failed.append(f"{target.table}: authenticated write blocked (HTTP {resp.status})")
                continue

            column = target.options.resolved_org_col() if preset == "team_scope" else target.options.resolved_owner_col()
            foreign_value = user_b.org_id if preset == "team_scope" else user_b.sub
            seeded = self._probe(
                result, f"{target.table}: seed row as second caller", "POST", url,
                body=sample_row(target, user_b), token=user_b.token,
            )
            if seeded is None:
                continue
            if not seeded.ok:
                # without a foreign row the read below proves nothing
                result.failed.append(f"{target.table}: write as second caller rejected (HTTP {seeded.status})")
                continue
            resp = self._probe(result, f"{target.table}: isolated read", "GET", url, token=user_a.token)
            if resp is None:
                continue
            if not resp.ok:
                result.failed.append(f"{target.table}: read as first caller failed (HTTP {resp.status})")
                continue
            rows = resp.json()
            if not isinstance(rows, list):
                raise VerificationProbeFailure([f"{target.table}: expected a JSON array of rows"])
            leaked = [row for row in rows if isinstance(row, dict) and row.get(column) == foreign_value]
            scope = "organization" if preset == "team_scope" else "owner"
            if leaked:
                result.failed.append(f"{target.table}: {scope} isolation broken ({len(leaked)} foreign rows)")
            else:
                result.passed.append(f"{target.table}: {scope} isolation holds")

    def _check_functions(self, plan: Plan, result: VerifyResult) -> None:
        for function in plan.steps_of("function"):
            label = f"Function {function.name}"
            resp = self._probe(
                result, label, "POST", f"{self.functions_url}/fn/{function.name}",
                body={"dryRun": True, "test": "verification"},
            )
            if resp is None:
                continue
            if not resp.ok:
                result.failed.append(f"{label}: HTTP {resp.status}")
                continue
            payload = resp.json()
            if isinstance(payload, dict) and payload.get("ok") is True:
                result.passed.append(f"{label}: dry run ok")
            else:
                result.failed.append(f"{label}: dry run did not return ok")

    def _check_smoke(self, plan: Plan, identities: tuple[ProbeIdentity, ProbeIdentity], result: VerifyResult) -> None:
        if plan.verification is None:
            return
        for check in plan.verification.smoke:
            label = f"{check.method} {check.path}"
            resp = self._probe(
                result, label, check.method, f"{self.api_url}{check.path}",
                body=check.body, token=_resolve_token(check, identities),
            )
            if resp is None:
                continue
            if resp.status == check.expect:
                result.passed.append(f"{label} -> {check.expect}")
            else:
                result.failed.append(f"{label} -> expected {check.expect}, got {resp.status}")


def _resolve_token(check: SmokeCheck, identities: tuple[ProbeIdentity, ProbeIdentity]) -> Optional[str]:
    if check.token == "$TOKEN_A":
        return identities[0].token
    if check.token == "$TOKEN_B":
        return identities[1].token
    return check.token
