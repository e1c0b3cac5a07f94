"""
Per-unit verification orchestrator.

A Verifier owns everything computed about one unit: the loaded unit, its
type oracle (unless one was supplied), the cached result of every
(pass, method) pair, and the warnings each pass produced.  Passes are
gated: a pass runs only once its prerequisite passed, otherwise the
caller gets a FAILED result naming the unmet prerequisite.

    do_pass1()        load + structure              (per unit)
    do_pass2()        declarations, needs pass 1    (per unit)
    do_pass3a(i)      CFG + operands, needs pass 2  (per method)
    do_pass3b(i)      data-flow, needs pass 3a(i)   (per method)

Results are memoized in dense tables indexed by method number.  Each
entry holds a Future, so concurrent callers asking for the same key wait
for the single computation instead of repeating it.  Cancelled results
are not cached: asking again recomputes.

A VerifierRegistry maps unit names to Verifiers for one session.  There
is no process-wide registry; callers create one and pass it around.
"""

import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .errors import LoadError
from .frontend.loader import canonical_unit_name
from .frontend.unit import ClassUnit
from .passes import STAGES
from .passes.base import (
    PassKind,
    PassOutcome,
    ResultKey,
    StageContext,
    VerificationResult,
    VerificationStatus,
)
from .structural.engine import EngineConfig, WorklistStrategy
from .z3model.hierarchy import ClassHierarchyOracle, TypeOracle


logger = logging.getLogger(__name__)

UnitLoader = Callable[[str], ClassUnit]


@dataclass
class VerifierConfig:
    """
    Configuration for a Verifier.

    Attributes:
        strategy: Work-set order of the data-flow engine
        max_visits_per_node: Engine visit bound; None derives it from the
            lattice height of each method
        report_unreachable: Warn about unreachable instructions in pass 3a
        cancel_check: Polled by the engine; returning True cancels pass 3b
    """
    strategy: WorklistStrategy = WorklistStrategy.RPO
    max_visits_per_node: Optional[int] = None
    report_unreachable: bool = True
    cancel_check: Optional[Callable[[], bool]] = None

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            strategy=self.strategy,
            max_visits_per_node=self.max_visits_per_node,
            cancel_check=self.cancel_check,
        )


@dataclass
class UnitReport:
    """All verdicts produced by Verifier.verify_all() for one unit."""
    name: str
    pass1: VerificationResult
    pass2: VerificationResult
    methods: List[Tuple[VerificationResult, VerificationResult]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def results(self) -> List[VerificationResult]:
        results = [self.pass1, self.pass2]
        for pass3a, pass3b in self.methods:
            results.extend((pass3a, pass3b))
        return results

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)


class Verifier:
    """
    Verifies one unit, caching every pass result until flush().

    Args:
        name: Unit name (any of the forms canonical_unit_name accepts)
        loader: Callable resolving a canonical name to a ClassUnit;
            raises LoadError when it cannot
        oracle: Type oracle to use; by default one is built from the
            unit's type metadata and dropped again on flush()
        config: Verifier configuration
    """

    def __init__(self, name: str, loader: UnitLoader,
                 oracle: Optional[TypeOracle] = None,
                 config: Optional[VerifierConfig] = None):
        self.class_name = canonical_unit_name(name)
        self.loader = loader
        self.config = config or VerifierConfig()
        self._given_oracle = oracle
        self._oracle: Optional[TypeOracle] = oracle
        self._unit: Optional[ClassUnit] = None
        self._load_error: Optional[str] = None
        self._lock = threading.Lock()
        self._unit_results: Dict[PassKind, Future] = {}
        self._method_results: Dict[PassKind, List[Optional[Future]]] = {}
        self._cfgs: List = []
        self._warnings: Dict[ResultKey, List[str]] = {}

    def __repr__(self) -> str:
        return f"Verifier({self.class_name!r})"

    # ------------------------------------------------------------------
    # Loaded state
    # ------------------------------------------------------------------

    @property
    def unit(self) -> Optional[ClassUnit]:
        """The loaded unit, or None before pass 1 ran or if loading failed."""
        return self._unit

    @property
    def method_count(self) -> int:
        """Number of methods of the unit; runs pass 1 if needed."""
        self.do_pass1()
        return len(self._unit.methods) if self._unit is not None else 0

    @property
    def oracle(self) -> Optional[TypeOracle]:
        return self._oracle

    def _context(self) -> StageContext:
        with self._lock:
            if self._oracle is None:
                self._oracle = ClassHierarchyOracle.from_unit(self._unit)
            return StageContext(self._unit, self._oracle, self.config)

    # ------------------------------------------------------------------
    # Memoization
    # ------------------------------------------------------------------

    def _table(self, kind: PassKind) -> List[Optional[Future]]:
        table = self._method_results.get(kind)
        if table is None:
            table = [None] * len(self._unit.methods)
            self._method_results[kind] = table
        return table

    def _get_slot(self, key: ResultKey) -> Optional[Future]:
        if key.method_index is None:
            return self._unit_results.get(key.pass_kind)
        return self._table(key.pass_kind)[key.method_index]

    def _set_slot(self, key: ResultKey, future: Optional[Future]) -> None:
        if key.method_index is None:
            if future is None:
                self._unit_results.pop(key.pass_kind, None)
            else:
                self._unit_results[key.pass_kind] = future
        else:
            self._table(key.pass_kind)[key.method_index] = future

    def _memoized(self, key: ResultKey,
                  compute: Callable[[], PassOutcome]) -> VerificationResult:
        with self._lock:
            future = self._get_slot(key)
            owner = future is None
            if owner:
                future = Future()
                self._set_slot(key, future)
        if not owner:
            return future.result()

        try:
            outcome = compute()
        except BaseException as e:
            with self._lock:
                self._set_slot(key, None)
            future.set_exception(e)
            raise

        result = VerificationResult(outcome.status, outcome.message, key)
        with self._lock:
            if outcome.status == VerificationStatus.CANCELLED:
                self._set_slot(key, None)
            elif outcome.warnings:
                self._warnings[key] = list(outcome.warnings)
            if key.pass_kind == PassKind.PASS3A and outcome.cfg is not None:
                self._cfgs[key.method_index] = outcome.cfg
            elif (key.pass_kind == PassKind.PASS3B
                    and outcome.status != VerificationStatus.CANCELLED):
                # the CFG only lives until the method has its verdict
                self._cfgs[key.method_index] = None
        future.set_result(result)
        self._log_verdict(result)
        return result

    def _log_verdict(self, result: VerificationResult) -> None:
        key = result.key
        where = self.class_name
        if key.method_index is not None:
            where = f"{where}, method {key.method_index}"
        logger.info("%s (%s): %s", key.pass_kind.label, where, result.status.value)

    def _gated(self, kind: PassKind, prerequisite: VerificationResult,
               method_index: Optional[int] = None) -> Optional[VerificationResult]:
        if prerequisite.ok:
            return None
        message = f"{kind.label} requires {kind.prerequisite.label} to succeed"
        if method_index is not None and kind == PassKind.PASS3B:
            message += f" for method {method_index}"
        message += "."
        return VerificationResult(
            VerificationStatus.FAILED, message,
            ResultKey(self.class_name, kind, method_index),
        )

    def _check_method_index(self, method_index: int) -> None:
        count = len(self._unit.methods)
        if not isinstance(method_index, int) or not 0 <= method_index < count:
            raise IndexError(
                f"method index {method_index!r} out of range for '{self.class_name}' "
                f"({count} methods)"
            )

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _run_pass1(self) -> PassOutcome:
        if self._unit is None:
            try:
                unit = self.loader(self.class_name)
            except LoadError as e:
                logger.debug("loading %s failed: %s", self.class_name, e)
                return PassOutcome(VerificationStatus.FAILED, f"Loading failed: {e}")
            with self._lock:
                self._unit = unit
                self._cfgs = [None] * len(unit.methods)
        return STAGES[PassKind.PASS1].run(
            StageContext(self._unit, self._oracle, self.config)
        )

    def do_pass1(self) -> VerificationResult:
        return self._memoized(ResultKey(self.class_name, PassKind.PASS1), self._run_pass1)

    def do_pass2(self) -> VerificationResult:
        gated = self._gated(PassKind.PASS2, self.do_pass1())
        if gated is not None:
            return gated
        return self._memoized(
            ResultKey(self.class_name, PassKind.PASS2),
            lambda: STAGES[PassKind.PASS2].run(self._context()),
        )

    def do_pass3a(self, method_index: int) -> VerificationResult:
        gated = self._gated(PassKind.PASS3A, self.do_pass2(), method_index)
        if gated is not None:
            return gated
        self._check_method_index(method_index)
        return self._memoized(
            ResultKey(self.class_name, PassKind.PASS3A, method_index),
            lambda: STAGES[PassKind.PASS3A].run(self._context(), method_index),
        )

    def do_pass3b(self, method_index: int) -> VerificationResult:
        gated = self._gated(PassKind.PASS3B, self.do_pass3a(method_index), method_index)
        if gated is not None:
            return gated

        def compute() -> PassOutcome:
            return STAGES[PassKind.PASS3B].run(
                self._context(), method_index, cfg=self._cfgs[method_index]
            )

        return self._memoized(
            ResultKey(self.class_name, PassKind.PASS3B, method_index), compute
        )

    def verify_method(self, method_index: int) -> Tuple[VerificationResult, VerificationResult]:
        return self.do_pass3a(method_index), self.do_pass3b(method_index)

    def verify_all(self, executor: Optional[Executor] = None) -> UnitReport:
        """
        Run every pass for the unit and every method.

        Methods are verified on `executor` when one is given, otherwise
        sequentially.  Per-method passes run only if pass 2 succeeded.
        """
        pass1 = self.do_pass1()
        pass2 = self.do_pass2()
        report = UnitReport(self.class_name, pass1, pass2)
        if pass2.ok:
            indices = range(len(self._unit.methods))
            if executor is None:
                report.methods = [self.verify_method(i) for i in indices]
            else:
                futures = [executor.submit(self.verify_method, i) for i in indices]
                report.methods = [f.result() for f in futures]
        report.warnings = self.messages()
        return report

    # ------------------------------------------------------------------
    # Diagnostics and lifecycle
    # ------------------------------------------------------------------

    def _message_prefix(self, key: ResultKey) -> str:
        if key.method_index is None:
            return f"{key.pass_kind.label}: "
        method = self._unit.methods[key.method_index]
        return f"{key.pass_kind.label}, method {key.method_index} ('{method}'): "

    def messages(self) -> List[str]:
        """Warnings of every pass computed so far, in pass and method order."""
        order = list(PassKind)
        with self._lock:
            keys = sorted(
                self._warnings,
                key=lambda k: (k.pass_kind.per_method,
                               -1 if k.method_index is None else k.method_index,
                               order.index(k.pass_kind)),
            )
            return [self._message_prefix(k) + message
                    for k in keys for message in self._warnings[k]]

    def flush(self) -> None:
        """
        Forget every cached result, warning and the loaded unit.

        Must not be called while a verification of this unit is running.
        """
        with self._lock:
            self._unit_results.clear()
            self._method_results.clear()
            self._warnings.clear()
            self._cfgs = []
            self._unit = None
            self._oracle = self._given_oracle
        logger.debug("flushed %s", self.class_name)


class VerifierRegistry:
    """
    Session-scoped map from unit name to Verifier.

    Args:
        loader: Shared unit loader handed to every Verifier
        oracle: Shared type oracle, or None for one oracle per unit
        config: Shared VerifierConfig
    """

    def __init__(self, loader: UnitLoader, oracle: Optional[TypeOracle] = None,
                 config: Optional[VerifierConfig] = None):
        self.loader = loader
        self.oracle = oracle
        self.config = config or VerifierConfig()
        self._verifiers: Dict[str, Verifier] = {}
        self._lock = threading.Lock()

    def get_verifier(self, name: str) -> Verifier:
        """Return the Verifier for `name`, creating it on first use."""
        key = canonical_unit_name(name)
        with self._lock:
            verifier = self._verifiers.get(key)
            if verifier is None:
                verifier = Verifier(key, self.loader, self.oracle, self.config)
                self._verifiers[key] = verifier
            return verifier

    def verifiers(self) -> List[Verifier]:
        with self._lock:
            return list(self._verifiers.values())

    def release(self, name: str) -> None:
        """Flush and forget the Verifier for `name`, if there is one."""
        with self._lock:
            verifier = self._verifiers.pop(canonical_unit_name(name), None)
        if verifier is not None:
            verifier.flush()

    def clear(self) -> None:
        with self._lock:
            verifiers = list(self._verifiers.values())
            self._verifiers.clear()
        for verifier in verifiers:
            verifier.flush()

    def __len__(self) -> int:
        return len(self._verifiers)

    def __contains__(self, name: str) -> bool:
        return canonical_unit_name(name) in self._verifiers
