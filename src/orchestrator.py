"""
Session orchestrator: the multi-screen selection workflow.

The workflow is an explicit state machine. ``transition`` is a pure function
from (state, event) to the next state; ``SessionOrchestrator`` runs a single
loop that performs the side effects for the current phase, turns the result
into an event and applies it.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from config import ConnectorConfig
from console import Console
from errors import AuthError, QueryError, ReadinessError, SelectorUnavailableError
from inventory import InventoryService, summarize
from models import (
    CallerIdentity,
    EnrichedTarget,
    ExitCode,
    IdentityContext,
    ReadinessTier,
)
from profiles import ProfileResolver
from selector import FzfSelector, OutcomeKind, Row
from session import SessionConnector, diagnose, readiness_diagnosis, report
from tasks import run_with_progress
from views import format_summary, format_target_preview, format_target_row

logger = logging.getLogger(__name__)

TARGET_HEADER = "O Ready | ? Needs verification | X Not ready | Enter: connect | Esc: back to profiles | ctrl-/: preview"
IDENTITY_HEADER = "Enter: select profile | Esc: exit"


class Phase(Enum):
    SELECT_IDENTITY = "select_identity"
    AUTHENTICATE = "authenticate"
    FETCH_INVENTORY = "fetch_inventory"
    SELECT_TARGET = "select_target"
    CONNECT = "connect"
    POST_CONNECT_MENU = "post_connect_menu"
    EXIT = "exit"


class EventKind(Enum):
    IDENTITY_CHOSEN = "identity_chosen"
    CANCELLED = "cancelled"
    BACK = "back"
    AUTHENTICATED = "authenticated"
    AUTH_ABANDONED = "auth_abandoned"
    INVENTORY_READY = "inventory_ready"
    RETRY_FETCH = "retry_fetch"
    NO_INSTANCES = "no_instances"
    CHANGE_IDENTITY = "change_identity"
    TARGET_CHOSEN = "target_chosen"
    SESSION_ENDED = "session_ended"
    READINESS_FAILED = "readiness_failed"
    ANOTHER_TARGET = "another_target"
    QUIT = "quit"
    DEPENDENCY_MISSING = "dependency_missing"


@dataclass
class Event:
    """Outcome of one phase handler."""

    kind: EventKind
    identity: Optional[IdentityContext] = None
    region: Optional[str] = None
    caller: Optional[CallerIdentity] = None
    inventory: Optional[List[EnrichedTarget]] = None
    target: Optional[EnrichedTarget] = None
    exit_code: Optional[int] = None


@dataclass
class WorkflowState:
    """Everything the workflow knows between screens."""

    phase: Phase = Phase.SELECT_IDENTITY
    active_identity: Optional[IdentityContext] = None
    active_region: Optional[str] = None
    restart_requested: bool = False
    caller: Optional[CallerIdentity] = None
    inventory: List[EnrichedTarget] = field(default_factory=list)
    selected: Optional[EnrichedTarget] = None
    session_status: Optional[int] = None
    exit_code: Optional[ExitCode] = None


class InvalidTransition(ValueError):
    """An event arrived in a phase that does not accept it."""


def _restart(state: WorkflowState, event: Event) -> WorkflowState:
    return WorkflowState(phase=Phase.SELECT_IDENTITY, restart_requested=True)


def _exit_with(code: ExitCode) -> Callable[[WorkflowState, Event], WorkflowState]:
    def apply(state: WorkflowState, event: Event) -> WorkflowState:
        return replace(state, phase=Phase.EXIT, exit_code=code)

    return apply


def _identity_chosen(state: WorkflowState, event: Event) -> WorkflowState:
    return replace(
        state,
        phase=Phase.AUTHENTICATE,
        active_identity=event.identity,
        active_region=event.region,
        caller=None,
        inventory=[],
        selected=None,
    )


def _authenticated(state: WorkflowState, event: Event) -> WorkflowState:
    return replace(state, phase=Phase.FETCH_INVENTORY, caller=event.caller)


def _inventory_ready(state: WorkflowState, event: Event) -> WorkflowState:
    return replace(
        state,
        phase=Phase.SELECT_TARGET,
        inventory=list(event.inventory or []),
        restart_requested=False,
    )


def _retry_fetch(state: WorkflowState, event: Event) -> WorkflowState:
    return replace(state, phase=Phase.FETCH_INVENTORY, inventory=[])


def _target_chosen(state: WorkflowState, event: Event) -> WorkflowState:
    return replace(state, phase=Phase.CONNECT, selected=event.target, session_status=None)


def _session_ended(state: WorkflowState, event: Event) -> WorkflowState:
    return replace(state, phase=Phase.POST_CONNECT_MENU, session_status=event.exit_code)


def _readiness_failed(state: WorkflowState, event: Event) -> WorkflowState:
    return replace(state, phase=Phase.POST_CONNECT_MENU, session_status=None)


def _another_target(state: WorkflowState, event: Event) -> WorkflowState:
    return replace(state, phase=Phase.SELECT_TARGET, selected=None, session_status=None)


TRANSITIONS: Dict[Tuple[Phase, EventKind], Callable[[WorkflowState, Event], WorkflowState]] = {
    (Phase.SELECT_IDENTITY, EventKind.IDENTITY_CHOSEN): _identity_chosen,
    (Phase.SELECT_IDENTITY, EventKind.CANCELLED): _exit_with(ExitCode.USER_CANCELLED),
    (Phase.AUTHENTICATE, EventKind.AUTHENTICATED): _authenticated,
    (Phase.AUTHENTICATE, EventKind.CHANGE_IDENTITY): _restart,
    (Phase.AUTHENTICATE, EventKind.AUTH_ABANDONED): _exit_with(ExitCode.AUTH_FAILED),
    (Phase.FETCH_INVENTORY, EventKind.INVENTORY_READY): _inventory_ready,
    (Phase.FETCH_INVENTORY, EventKind.RETRY_FETCH): _retry_fetch,
    (Phase.FETCH_INVENTORY, EventKind.CHANGE_IDENTITY): _restart,
    (Phase.FETCH_INVENTORY, EventKind.NO_INSTANCES): _exit_with(ExitCode.NO_INSTANCES),
    (Phase.SELECT_TARGET, EventKind.TARGET_CHOSEN): _target_chosen,
    (Phase.SELECT_TARGET, EventKind.CANCELLED): _restart,
    (Phase.SELECT_TARGET, EventKind.BACK): _restart,
    (Phase.CONNECT, EventKind.SESSION_ENDED): _session_ended,
    (Phase.CONNECT, EventKind.READINESS_FAILED): _readiness_failed,
    (Phase.POST_CONNECT_MENU, EventKind.ANOTHER_TARGET): _another_target,
    (Phase.POST_CONNECT_MENU, EventKind.CHANGE_IDENTITY): _restart,
    (Phase.POST_CONNECT_MENU, EventKind.QUIT): _exit_with(ExitCode.SUCCESS),
}


def transition(state: WorkflowState, event: Event) -> WorkflowState:
    """
    Compute the next workflow state.

    Pure: the input state is never modified. Returning to identity
    selection drops every binding of the previous identity.

    Args:
        state: Current state
        event: Event produced by the current phase

    Returns:
        Next state

    Raises:
        InvalidTransition: If the phase does not accept the event
    """
    if event.kind is EventKind.DEPENDENCY_MISSING:
        return replace(state, phase=Phase.EXIT, exit_code=ExitCode.MISSING_DEPENDENCY)
    if state.phase is Phase.EXIT:
        raise InvalidTransition(f"Workflow already finished; got {event.kind.value}")
    handler = TRANSITIONS.get((state.phase, event.kind))
    if handler is None:
        raise InvalidTransition(f"{event.kind.value} is not valid in {state.phase.value}")
    return handler(state, event)


class SessionOrchestrator:
    """Drives the identity -> inventory -> target -> session loop."""

    def __init__(
        self,
        config: ConnectorConfig,
        resolver: ProfileResolver,
        inventory: InventoryService,
        selector: FzfSelector,
        connector: SessionConnector,
        console: Optional[Console] = None,
        progress: Callable = run_with_progress,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Run configuration
            resolver: Profile discovery and verification
            inventory: Target inventory service
            selector: Interactive list selector
            connector: Readiness test and session execution
            console: Operator prompts
            progress: Runs a blocking call while showing progress
        """
        self.config = config
        self.resolver = resolver
        self.inventory = inventory
        self.selector = selector
        self.connector = connector
        self.console = console or Console()
        self.progress = progress
        self.state = WorkflowState()
        self.handlers = {
            Phase.SELECT_IDENTITY: self._select_identity,
            Phase.AUTHENTICATE: self._authenticate,
            Phase.FETCH_INVENTORY: self._fetch_inventory,
            Phase.SELECT_TARGET: self._select_target,
            Phase.CONNECT: self._connect,
            Phase.POST_CONNECT_MENU: self._post_connect_menu,
        }

    def run(self) -> ExitCode:
        """
        Run the workflow until it exits.

        Returns:
            Process exit code
        """
        self.state = WorkflowState()
        while self.state.phase is not Phase.EXIT:
            try:
                event = self.handlers[self.state.phase](self.state)
            except SelectorUnavailableError as e:
                logger.error(f"❌ {e}")
                event = Event(EventKind.DEPENDENCY_MISSING)
            logger.debug(f"{self.state.phase.value} --{event.kind.value}-->")
            self.state = transition(self.state, event)
        return self.state.exit_code

    def _select_identity(self, state: WorkflowState) -> Event:
        if state.restart_requested:
            logger.info("Returning to profile selection...")
        contexts = self.resolver.list_identity_contexts()
        rows = [
            Row(
                key=ctx.name,
                text=f"{ctx.name}{' (SSO)' if ctx.federated else ''}",
                value=ctx,
            )
            for ctx in contexts
        ]
        outcome = self.selector.select(
            rows,
            allow_back=False,
            preview=lambda row: self.resolver.describe(row.value),
            prompt="Select AWS Profile: ",
            header=IDENTITY_HEADER,
        )
        if outcome.kind is OutcomeKind.CHOSEN:
            ctx = outcome.row.value
            logger.info(f"✓ Selected AWS profile: {ctx.name}")
            return Event(EventKind.IDENTITY_CHOSEN, identity=ctx, region=self.config.region)
        logger.info("Profile selection cancelled")
        return Event(EventKind.CANCELLED)

    def _authenticate(self, state: WorkflowState) -> Event:
        try:
            caller = self.resolver.verify(state.active_identity)
        except AuthError as e:
            logger.error(f"❌ Authentication failed for profile '{e.profile}'")
            self.console.show(self.resolver.auth_guidance(e))
            if self.console.confirm("Would you like to select a different AWS profile?"):
                return Event(EventKind.CHANGE_IDENTITY)
            return Event(EventKind.AUTH_ABANDONED)
        return Event(EventKind.AUTHENTICATED, caller=caller)

    def _fetch_inventory(self, state: WorkflowState) -> Event:
        ctx = state.active_identity
        region = state.active_region
        cancelled = threading.Event()
        try:
            items = self.progress(
                self.inventory.load,
                ctx,
                region,
                cancelled,
                message="Loading SSM managed instances...",
                cancel=cancelled,
            )
        except QueryError as e:
            logger.error(f"❌ Failed to query instances in {region}: {e.detail}")
            choice = self.console.choose(
                "What would you like to do?",
                [
                    ("retry", "Retry"),
                    ("identity", "Select a different AWS profile"),
                    ("exit", "Exit"),
                ],
                default="exit",
            )
            return {
                "retry": Event(EventKind.RETRY_FETCH),
                "identity": Event(EventKind.CHANGE_IDENTITY),
            }.get(choice, Event(EventKind.NO_INSTANCES))

        if not items:
            self.console.show(
                [
                    f"⚠ No SSM managed instances found for profile '{ctx.name}' in {region}",
                    "Possible reasons:",
                    "  • No EC2 instances with SSM Agent installed",
                    "  • SSM Agent not running or not registered",
                    "  • Instance IAM role lacks AmazonSSMManagedInstanceCore",
                    "  • Wrong region selected",
                ]
            )
            choice = self.console.choose(
                "What would you like to do?",
                [("identity", "Try a different AWS profile"), ("exit", "Exit")],
                default="exit",
            )
            if choice == "identity":
                return Event(EventKind.CHANGE_IDENTITY)
            return Event(EventKind.NO_INSTANCES)

        counts = summarize(items)
        logger.info(f"Instance status: {format_summary(counts)}")
        if counts[ReadinessTier.NEEDS_VERIFICATION]:
            logger.info("? targets will be tested when selected")
        return Event(EventKind.INVENTORY_READY, inventory=items)

    def _select_target(self, state: WorkflowState) -> Event:
        by_id = {item.id: item for item in state.inventory}
        rows = [Row(key=item.id, text=format_target_row(item), value=item) for item in state.inventory]
        outcome = self.selector.select(
            rows,
            allow_back=True,
            preview=lambda row: format_target_preview(by_id.get(row.key)),
            prompt="Select Instance: ",
            header=TARGET_HEADER,
            back_destination="profile selection",
        )
        if outcome.kind is OutcomeKind.CHOSEN:
            item = outcome.row.value
            logger.info(f"✓ Selected instance: {item.id}")
            return Event(EventKind.TARGET_CHOSEN, target=item)
        if outcome.kind is OutcomeKind.BACK:
            return Event(EventKind.BACK)
        logger.info("Instance selection cancelled")
        return Event(EventKind.CANCELLED)

    def _connect(self, state: WorkflowState) -> Event:
        item = state.selected
        ctx = state.active_identity
        region = state.active_region
        try:
            self.connector.test_readiness(item.target, ctx, region)
        except ReadinessError as e:
            report(readiness_diagnosis(e), e.target_id)
            return Event(EventKind.READINESS_FAILED)

        exit_code = self.connector.connect(item.target, ctx, region)
        diagnosis = diagnose(exit_code, self.connector.last_stderr)
        if diagnosis is not None:
            report(diagnosis, item.id)
        return Event(EventKind.SESSION_ENDED, exit_code=exit_code)

    def _post_connect_menu(self, state: WorkflowState) -> Event:
        choice = self.console.choose(
            "What would you like to do next?",
            [
                ("target", "Connect to another instance"),
                ("identity", "Change AWS profile"),
                ("quit", "Exit"),
            ],
            default="target",
        )
        if choice == "target":
            return Event(EventKind.ANOTHER_TARGET)
        if choice == "identity":
            return Event(EventKind.CHANGE_IDENTITY)
        logger.info("Goodbye!")
        return Event(EventKind.QUIT)
