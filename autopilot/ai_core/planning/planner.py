"""
Modification Planner

Turns an instruction into a typed, diffed edit set:
1. Build repository context (tree, signal files, primary language, history)
2. Select candidate files and truncate them to the oracle byte budget
3. Invoke the reasoning oracle and validate its response strictly
4. Normalize edits against the live repository and recompute every diff
5. For unattended runs, drop edits that fail the meaningfulness gate
"""

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as SchemaValidationError

from autopilot.ai_core.oracle import ReasoningOracle
from autopilot.ai_core.prompts.planning import REFINEMENT_INSTRUCTION_TEMPLATE
from autopilot.config import get_settings
from autopilot.exceptions import (
    ChangeNotMeaningfulError,
    NotFoundError,
    OracleContractViolation,
    ValidationError,
)
from autopilot.integrations.github import CommitInfo, ContentGateway, TreeEntry
from autopilot.models.proposal import ChangeProposal, EditAction, FileEdit, RiskLevel
from autopilot.models.repository import RepositoryConfig
from autopilot.utils.diff import generate_diff, split_lines

logger = logging.getLogger(__name__)

# Manifest, readme and config files worth showing the oracle for any repository
SIGNAL_FILE_PATTERN = re.compile(
    r"^(readme(\.\w+)?|package\.json|requirements(-\w+)?\.txt|pyproject\.toml|"
    r"setup\.(py|cfg)|pom\.xml|build\.gradle(\.kts)?|cargo\.toml|go\.mod|"
    r"gemfile|composer\.json|tsconfig\.json|dockerfile|.*\.config\.(js|ts|mjs|cjs))$",
    re.IGNORECASE,
)

LANGUAGE_BY_EXTENSION = {
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "java": "java",
    "c": "c",
    "cpp": "cpp",
    "cs": "csharp",
    "go": "go",
    "rs": "rust",
    "php": "php",
    "rb": "ruby",
    "swift": "swift",
    "kt": "kotlin",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "json": "json",
    "xml": "xml",
    "yaml": "yaml",
    "yml": "yaml",
    "md": "markdown",
    "sh": "shell",
    "sql": "sql",
}


def detect_language(extension: str) -> str:
    return LANGUAGE_BY_EXTENSION.get(extension.lower(), extension or "unknown")


def file_extension(path: str) -> str:
    name = path.rsplit("/", 1)[-1]
    if "." not in name.lstrip("."):
        return ""
    return name.rsplit(".", 1)[-1]


def infer_primary_extension(tree: List[TreeEntry]) -> str:
    """
    Most frequent file extension among blob entries.
    Ties go to the extension encountered first in tree order.
    """
    counts: Dict[str, int] = {}
    for entry in tree:
        if entry.kind != "blob":
            continue
        ext = file_extension(entry.path)
        if ext:
            counts[ext] = counts.get(ext, 0) + 1

    best = ""
    best_count = 0
    for ext, count in counts.items():  # dicts keep first-encountered order
        if count > best_count:
            best, best_count = ext, count
    return best


def truncate_to_bytes(content: str, budget: int) -> str:
    encoded = content.encode("utf-8")
    if len(encoded) <= budget:
        return content
    return encoded[:budget].decode("utf-8", errors="ignore")


def is_meaningful(
    before: str, after: str, min_line_delta: int, min_byte_delta: int
) -> bool:
    """
    A change is not meaningful when it is a no-op, or when its line-count
    delta and its byte growth are both below their thresholds. Byte growth is
    signed: a large removal counts only through its line delta.
    """
    if before == after:
        return False
    line_delta = abs(len(split_lines(after)) - len(split_lines(before)))
    byte_delta = len(after.encode("utf-8")) - len(before.encode("utf-8"))
    return not (line_delta < min_line_delta and byte_delta < min_byte_delta)


class RepositoryFile(BaseModel):
    path: str
    content: str


class RepositoryContext(BaseModel):
    """Everything the planner knows about a repository before asking the oracle."""

    repository_name: str
    description: str = ""
    tree: List[TreeEntry] = Field(default_factory=list)
    signal_files: List[RepositoryFile] = Field(default_factory=list)
    primary_extension: str = ""
    primary_language: str = "unknown"
    recent_commits: List[CommitInfo] = Field(default_factory=list)

    @property
    def readme(self) -> str:
        for f in self.signal_files:
            if f.path.rsplit("/", 1)[-1].lower().startswith("readme"):
                return f.content
        return ""


class PlannedChange(BaseModel):
    """One edit as the oracle must express it."""

    path: str = Field(..., min_length=1)
    action: EditAction
    reason: str
    content: str = ""


class PlanResponse(BaseModel):
    """The exact shape the oracle must answer with."""

    plan: str
    changes: List[PlannedChange] = Field(..., min_length=1)
    commit_message: str = Field(..., min_length=1)
    risk: RiskLevel
    explanation: str = ""

    @field_validator("changes")
    @classmethod
    def unique_paths(cls, changes: List[PlannedChange]) -> List[PlannedChange]:
        paths = [c.path for c in changes]
        if len(paths) != len(set(paths)):
            raise ValueError("each path may appear in at most one change")
        return changes


class ProposedEditSet(BaseModel):
    """Normalized, diffed output of one planning call."""

    plan: str
    explanation: str
    risk: RiskLevel
    commit_message: str
    edits: List[FileEdit]


class ModificationPlanner:
    """
    Builds repository context, delegates to the reasoning oracle and normalizes
    its answer into typed file edits.
    """

    def __init__(self, oracle: ReasoningOracle, settings=None):
        self.oracle = oracle
        self.settings = settings or get_settings()

    async def build_context(
        self, config: RepositoryConfig, gateway: ContentGateway
    ) -> RepositoryContext:
        """
        Assemble file tree, signal files, primary language and recent history.

        Raises:
            RepositoryEmptyError: Propagated from the gateway for empty repositories
            TransportError: If the tree cannot be listed
        """
        tree = await gateway.list_tree()

        signal_files: List[RepositoryFile] = []
        for entry in tree:
            if len(signal_files) >= self.settings.max_signal_files:
                break
            if entry.kind != "blob":
                continue
            if not SIGNAL_FILE_PATTERN.match(entry.path.rsplit("/", 1)[-1]):
                continue
            try:
                f = await gateway.read_file(entry.path)
                signal_files.append(RepositoryFile(path=f.path, content=f.content))
            except Exception as e:
                logger.warning(f"Could not read signal file {entry.path}: {e}")

        try:
            recent_commits = await gateway.recent_history(
                self.settings.recent_history_count
            )
        except Exception as e:
            logger.warning(f"Could not read recent history for {config.full_name}: {e}")
            recent_commits = []

        primary_extension = infer_primary_extension(tree)
        context = RepositoryContext(
            repository_name=config.name,
            description=config.description,
            tree=tree,
            signal_files=signal_files,
            primary_extension=primary_extension,
            primary_language=detect_language(primary_extension),
            recent_commits=recent_commits,
        )
        logger.info(
            f"Built context for {config.full_name}: {len(tree)} entries, "
            f"{len(signal_files)} signal files, language={context.primary_language}"
        )
        return context

    async def select_candidate_files(
        self, context: RepositoryContext, gateway: ContentGateway
    ) -> List[RepositoryFile]:
        """Signal files plus the first source files in the primary language."""
        candidates = list(context.signal_files)
        seen = {f.path for f in candidates}

        for entry in context.tree:
            if len(candidates) >= self.settings.max_candidate_files:
                break
            if entry.kind != "blob" or entry.path in seen:
                continue
            if not context.primary_extension or file_extension(entry.path) != context.primary_extension:
                continue
            try:
                f = await gateway.read_file(entry.path)
                candidates.append(RepositoryFile(path=f.path, content=f.content))
                seen.add(f.path)
            except Exception as e:
                logger.warning(f"Could not read candidate file {entry.path}: {e}")

        return candidates

    def _context_payload(
        self, context: RepositoryContext, candidate_files: List[RepositoryFile]
    ) -> Dict[str, Any]:
        budget = self.settings.oracle_file_byte_budget
        files = context.tree[: self.settings.max_tree_entries_in_prompt]

        files_context = "\n".join(
            f"\n=== File: {f.path} ===\n{truncate_to_bytes(f.content, budget)}"
            for f in candidate_files
        )
        return {
            "repository_name": context.repository_name,
            "repository_description": context.description or "(none)",
            "primary_language": context.primary_language,
            "file_count": len(context.tree),
            "file_tree": "\n".join(
                f"  {'[dir]' if e.kind == 'tree' else '-'} {e.path}" for e in files
            ),
            "recent_commits": "\n".join(
                f"- {c.message.splitlines()[0] if c.message else ''}"
                for c in context.recent_commits
            )
            or "(none)",
            "files_context": files_context or "(none)",
        }

    def _parse_response(self, raw: Any) -> PlanResponse:
        if isinstance(raw, PlanResponse):
            return raw
        if not isinstance(raw, dict):
            raise OracleContractViolation(
                f"Oracle response must be an object, got {type(raw).__name__}"
            )
        try:
            return PlanResponse.model_validate(raw)
        except SchemaValidationError as e:
            raise OracleContractViolation(
                f"Oracle response does not match the plan contract: {e}"
            ) from e

    async def _normalize_edit(
        self,
        change: PlannedChange,
        known: Dict[str, str],
        gateway: ContentGateway,
    ) -> Optional[FileEdit]:
        """Reconcile an oracle edit with what actually exists in the repository."""
        before: Optional[str] = known.get(change.path)
        if before is None:
            try:
                before = (await gateway.read_file(change.path)).content
            except NotFoundError:
                before = None
            except ValidationError as e:
                logger.warning(f"Dropping edit of {change.path}: {e}")
                return None

        action = change.action
        if action == EditAction.UPDATE and before is None:
            logger.info(f"{change.path} does not exist, treating update as create")
            action = EditAction.CREATE
        elif action == EditAction.CREATE and before is not None:
            logger.info(f"{change.path} already exists, treating create as update")
            action = EditAction.UPDATE
        elif action == EditAction.DELETE and before is None:
            logger.warning(f"Dropping delete of missing file {change.path}")
            return None

        content_before = "" if action == EditAction.CREATE else before
        content_after = "" if action == EditAction.DELETE else change.content

        return FileEdit(
            path=change.path,
            action=action,
            reason=change.reason,
            content_before=content_before,
            content_after=content_after,
            diff=generate_diff(change.path, content_before, content_after),
        )

    async def plan(
        self,
        instruction: str,
        context: RepositoryContext,
        candidate_files: List[RepositoryFile],
        gateway: ContentGateway,
        unattended: bool = False,
    ) -> ProposedEditSet:
        """
        Delegate to the oracle and return a normalized, diffed edit set.

        Raises:
            ValidationError: If the instruction is empty
            OracleContractViolation: If the oracle answer has the wrong shape
            OracleUnavailableError: If the oracle cannot be reached
            ChangeNotMeaningfulError: Unattended only, when no edit passes the gate
        """
        if not instruction or not instruction.strip():
            raise ValidationError("Instruction is required")

        payload = self._context_payload(context, candidate_files)
        logger.info(f"Planning for {context.repository_name}: {instruction[:100]}")

        raw = await self.oracle.generate(instruction, payload)
        response = self._parse_response(raw)

        known = {f.path: f.content for f in candidate_files}
        edits: List[FileEdit] = []
        for change in response.changes:
            edit = await self._normalize_edit(change, known, gateway)
            if edit:
                edits.append(edit)

        if unattended:
            edits = self._apply_meaningfulness_gate(edits)

        if not edits:
            raise OracleContractViolation("Oracle proposed no applicable edits")

        logger.info(
            f"Plan created: {len(edits)} edits, risk={response.risk.value}"
        )
        return ProposedEditSet(
            plan=response.plan,
            explanation=response.explanation,
            risk=response.risk,
            commit_message=response.commit_message,
            edits=edits,
        )

    def _apply_meaningfulness_gate(self, edits: List[FileEdit]) -> List[FileEdit]:
        kept = [
            edit
            for edit in edits
            if is_meaningful(
                edit.content_before,
                edit.content_after,
                self.settings.min_line_delta,
                self.settings.min_byte_delta,
            )
        ]
        for edit in edits:
            if edit not in kept:
                logger.info(f"Change to {edit.path} is not meaningful, dropped")
        if edits and not kept:
            raise ChangeNotMeaningfulError(
                "Proposed change is too small to be worth committing"
            )
        return kept

    async def refine(
        self,
        proposal: ChangeProposal,
        feedback: str,
        context: RepositoryContext,
        candidate_files: List[RepositoryFile],
        gateway: ContentGateway,
    ) -> ProposedEditSet:
        """Re-plan a proposal with reviewer feedback folded into the instruction."""
        if not feedback or not feedback.strip():
            raise ValidationError("Feedback is required")

        instruction = REFINEMENT_INSTRUCTION_TEMPLATE.format(
            instruction=proposal.instruction,
            previous_plan=proposal.plan,
            feedback=feedback,
        )
        return await self.plan(instruction, context, candidate_files, gateway)
