"""Catalogue of manuscript tools.

Every tool is described by data and executed by the same engine
(``writerkit.core.executor.AnalysisTool``). A definition names the tool,
lists its inputs and says which input is the document sent to the model.
Tools with ``generates=False`` only count the words and tokens of their
document and never ask the model to generate.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Tuple

from .errors import UnknownToolError

InputKind = Literal["required", "optional", "placeholder", "text"]


def title_from_name(name: str) -> str:
    """``rhythm_analyzer`` -> ``Rhythm Analyzer``."""
    return " ".join(word[:1].upper() + word[1:] for word in name.split("_") if word)


@dataclass(frozen=True)
class ToolInput:
    """One input of a tool: a file path or a free-text option."""

    name: str
    kind: InputKind = "required"
    default: str = ""
    description: str = ""

    @property
    def is_file(self) -> bool:
        return self.kind != "text"


@dataclass(frozen=True)
class ToolDefinition:
    """Static description of a tool."""

    name: str
    label: str
    description: str
    inputs: Tuple[ToolInput, ...] = field(default_factory=tuple)
    document_input: Optional[str] = "manuscript_file"
    thinking: bool = False
    appends_to: Optional[str] = None
    category: Literal["editing", "writing"] = "editing"
    generates: bool = True

    @property
    def title(self) -> str:
        return title_from_name(self.name)

    def get_input(self, name: str) -> Optional[ToolInput]:
        for tool_input in self.inputs:
            if tool_input.name == name:
                return tool_input
        return None

    def defaults(self) -> Dict[str, str]:
        return {tool_input.name: tool_input.default for tool_input in self.inputs}


MANUSCRIPT = ToolInput("manuscript_file", "required", "manuscript.txt",
                       "File containing the manuscript to analyze")
OUTLINE_OPTIONAL = ToolInput("outline_file", "optional", "outline.txt",
                             "Outline used as reference context")
WORLD_OPTIONAL = ToolInput("world_file", "optional", "world.txt",
                           "World document used as reference context")


def _editing(name: str, label: str, description: str, *extra: ToolInput,
             thinking: bool = False) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        label=label,
        description=description,
        inputs=(MANUSCRIPT, *extra),
        thinking=thinking,
    )


_TOOLS: List[ToolDefinition] = [
    ToolDefinition(
        name="tokens_words_counter",
        label="Tokens & Words Counter",
        description="Count the approximate tokens and words in a text file; also verifies the API key.",
        inputs=(ToolInput("input_file", "required", "manuscript.txt", "Text file to count"),),
        document_input="input_file",
        generates=False,
    ),
    _editing("manuscript_to_outline_characters_world",
             "Manuscript to Outline, Characters and World",
             "Works in reverse to create outline, characters and world files from a manuscript."),
    _editing("narrative_integrity", "Narrative Integrity",
             "Consistency checks within the manuscript and against the world and outline documents.",
             WORLD_OPTIONAL, OUTLINE_OPTIONAL),
    _editing("developmental_editing", "Developmental Editing",
             "Developmental edit of the whole manuscript."),
    _editing("line_editing", "Line Editing",
             "Line edit of a single chapter of the manuscript.",
             ToolInput("chapter_number", "text", "1", "Chapter to line edit")),
    _editing("copy_editing", "Copy Editing", "Copy edit of the whole manuscript."),
    _editing("proofreader_spelling", "Proofreader Spelling", "Spell check of the whole manuscript."),
    _editing("proofreader_punctuation", "Proofreader Punctuation",
             "Punctuation effectiveness: run-on sentences, missing commas, irregular patterns."),
    _editing("proofreader_plot_consistency", "Proofreader Plot Consistency",
             "Focused solely on plot inconsistencies."),
    _editing("plot_thread_tracker", "Plot Thread Tracker",
             "Identifies distinct plot threads and how they converge and diverge.",
             OUTLINE_OPTIONAL),
    _editing("tense_consistency_checker", "Tense Consistency Checker",
             "Finds unintentional shifts between past and present tense."),
    _editing("character_analyzer", "Character Analyzer",
             "Compares character appearances across manuscript, outline and world files.",
             OUTLINE_OPTIONAL, WORLD_OPTIONAL),
    _editing("adjective_adverb_optimizer", "Adjective Adverb Optimizer",
             "Pinpoints unnecessary modifiers and overused qualifiers."),
    _editing("dangling_modifier_checker", "Dangling Modifier Checker",
             "Detects dangling and misplaced modifiers."),
    _editing("rhythm_analyzer", "Rhythm Analyzer",
             "Evaluates sentence rhythm and flow of the prose."),
    _editing("crowding_leaping_evaluator", "Crowding Leaping Evaluator",
             "Pacing evaluation of dense sections and abrupt transitions."),
    _editing("conflict_analyzer", "Conflict Analyzer",
             "Conflict nature, escalation and resolution at scene, chapter and arc level."),
    _editing("foreshadowing_tracker", "Foreshadowing Tracker",
             "Tracks foreshadowing elements and their payoffs."),
    _editing("kdp_publishing_prep", "KDP Publishing Preparation",
             "Analyzes the manuscript in preparation for KDP publishing."),
    _editing("drunken", "Drunken",
             "A deliberately tipsy critique of the manuscript."),
    ToolDefinition(
        name="brainstorm",
        label="Brainstorm",
        description="Generates story ideas and appends them to the ideas file.",
        inputs=(ToolInput("ideas_file", "placeholder", "ideas.txt", "Ideas file to extend"),),
        document_input="ideas_file",
        appends_to="ideas_file",
        category="writing",
    ),
    ToolDefinition(
        name="outline_writer",
        label="Outline Writer",
        description="Generates a plot outline from the brainstorming file.",
        inputs=(
            ToolInput("premise_file", "required", "brainstorm.txt", "Brainstorm or premise file"),
            ToolInput("lang", "text", "English", "Language to write in"),
        ),
        document_input="premise_file",
        category="writing",
    ),
    ToolDefinition(
        name="world_writer",
        label="World Writer",
        description="Develops characters and world elements from an outline.",
        inputs=(
            ToolInput("outline_file", "required", "outline.txt", "Outline to build the world from"),
            ToolInput("brainstorm_file", "optional", "brainstorm.txt", "Brainstorm notes"),
            ToolInput("title", "text", "", "Book title"),
            ToolInput("pov", "text", "third person perspective", "Point of view"),
            ToolInput("lang", "text", "English", "Language to write in"),
        ),
        document_input="outline_file",
        category="writing",
    ),
    ToolDefinition(
        name="chapter_writer",
        label="Chapter Writer",
        description="Writes the first chapter of the outline that is missing from the manuscript.",
        inputs=(
            ToolInput("manuscript", "placeholder", "manuscript.txt", "Manuscript receiving the chapter"),
            ToolInput("outline", "required", "outline.txt", "Outline listing 'Chapter N: Title' lines"),
            ToolInput("world", "optional", "world.txt", "World document"),
            ToolInput("lang", "text", "English", "Language to write in"),
        ),
        document_input=None,
        appends_to="manuscript",
        category="writing",
    ),
]

TOOL_CATALOGUE: Dict[str, ToolDefinition] = {tool.name: tool for tool in _TOOLS}


def get_tool(name: str) -> ToolDefinition:
    """Look up a tool definition by name."""
    try:
        return TOOL_CATALOGUE[name]
    except KeyError:
        available = ", ".join(sorted(TOOL_CATALOGUE))
        raise UnknownToolError(f"Unknown tool '{name}'. Available: {available}") from None


def list_tools(category: Optional[str] = None) -> List[ToolDefinition]:
    return [tool for tool in _TOOLS if category is None or tool.category == category]
