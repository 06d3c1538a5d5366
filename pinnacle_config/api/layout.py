"""
Tree-based layouts.

The compositor asks the config for a tree of layout nodes whenever a
layout is needed on an output; leaves are filled with windows in
traversal order. Layout generators build such trees from a window count.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models import Event, EventCategory
from .base import ApiSection, SignalHandle, invoke, require_callable
from .handles import OutputHandle

logger = logging.getLogger(__name__)


# Layout tree

class FlexDir(str, Enum):
    """Direction children of a node are laid out in."""
    ROW = "row"
    COLUMN = "column"


class Gaps(BaseModel):
    """Gaps around a node, in logical pixels."""

    left: float = Field(0.0, ge=0)
    right: float = Field(0.0, ge=0)
    top: float = Field(0.0, ge=0)
    bottom: float = Field(0.0, ge=0)

    @classmethod
    def uniform(cls, size: float) -> "Gaps":
        return cls(left=size, right=size, top=size, bottom=size)


class NodeStyle(BaseModel):
    """How a node is sized and how it lays out its children."""

    size_proportion: float = Field(1.0, gt=0, description="Share of the parent's space")
    flex_dir: FlexDir = FlexDir.ROW
    gaps: Gaps = Field(default_factory=Gaps)


class LayoutNode(BaseModel):
    """A node in a layout tree; leaves hold windows."""

    label: Optional[str] = Field(None, description="Stable label used to match nodes across layouts")
    traversal_index: int = Field(0, ge=0)
    style: NodeStyle = Field(default_factory=NodeStyle)
    children: List["LayoutNode"] = Field(default_factory=list)

    def leaf_count(self) -> int:
        if not self.children:
            return 1
        return sum(child.leaf_count() for child in self.children)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class LayoutArgs(BaseModel):
    """A layout request from the compositor."""

    model_config = ConfigDict(extra="ignore")

    output: str
    window_count: int = Field(..., ge=0)
    tags: List[int] = Field(default_factory=list, description="Active tag ids on the output")


class LayoutResponse(BaseModel):
    """Reply to a layout request; tree_id identifies the generator that built the tree."""

    root_node: LayoutNode
    tree_id: int = 0


# Generators

def _leaf(gaps: float, label: Optional[str] = None) -> LayoutNode:
    return LayoutNode(label=label, style=NodeStyle(gaps=Gaps.uniform(gaps)))


class MasterStack(BaseModel):
    """One or more master windows on one side, the rest stacked beside them."""

    master_side: str = Field("left", description="left, right, top or bottom")
    master_factor: float = Field(0.5, gt=0, lt=1)
    master_count: int = Field(1, ge=1)
    inner_gaps: float = Field(4.0, ge=0)
    outer_gaps: float = Field(4.0, ge=0)
    reversed: bool = False

    @field_validator('master_side')
    @classmethod
    def validate_master_side(cls, v: str) -> str:
        if v not in ("left", "right", "top", "bottom"):
            raise ValueError(f"Invalid master side: {v}")
        return v

    def layout(self, window_count: int) -> LayoutNode:
        root = LayoutNode(label="master_stack", style=NodeStyle(gaps=Gaps.uniform(self.outer_gaps)))
        if window_count <= 0:
            return root

        horizontal = self.master_side in ("left", "right")
        root.style.flex_dir = FlexDir.ROW if horizontal else FlexDir.COLUMN
        # Groups stack along the axis perpendicular to the root
        group_dir = FlexDir.COLUMN if horizontal else FlexDir.ROW

        master_count = min(window_count, self.master_count)
        stack_count = window_count - master_count

        master = LayoutNode(
            label="master",
            style=NodeStyle(flex_dir=group_dir, size_proportion=self.master_factor * 10),
            children=[_leaf(self.inner_gaps) for _ in range(master_count)],
        )
        if stack_count == 0:
            root.children = [master]
            return _number_leaves(root, self.reversed)

        stack = LayoutNode(
            label="stack",
            traversal_index=1,
            style=NodeStyle(flex_dir=group_dir, size_proportion=(1 - self.master_factor) * 10),
            children=[_leaf(self.inner_gaps) for _ in range(stack_count)],
        )
        if self.master_side in ("left", "top"):
            root.children = [master, stack]
        else:
            root.children = [stack, master]
        return _number_leaves(root, self.reversed)


class Dwindle(BaseModel):
    """Each window takes part of the remaining space, alternating split direction."""

    split_factor: float = Field(0.5, gt=0, lt=1)
    inner_gaps: float = Field(4.0, ge=0)
    outer_gaps: float = Field(4.0, ge=0)

    def layout(self, window_count: int) -> LayoutNode:
        root = LayoutNode(label="dwindle", style=NodeStyle(gaps=Gaps.uniform(self.outer_gaps)))
        if window_count <= 0:
            return root
        if window_count == 1:
            root.children = [_leaf(self.inner_gaps)]
            return _number_leaves(root)

        current = root
        for index in range(window_count - 1):
            current.style.flex_dir = FlexDir.ROW if index % 2 == 0 else FlexDir.COLUMN
            leaf = _leaf(self.inner_gaps)
            leaf.style.size_proportion = self.split_factor * 10
            rest = LayoutNode(
                label=f"dwindle_{index + 1}",
                style=NodeStyle(size_proportion=(1 - self.split_factor) * 10),
            )
            current.children = [leaf, rest]
            current = rest
        current.children = [_leaf(self.inner_gaps)]
        return _number_leaves(root)


def _number_leaves(root: LayoutNode, reverse: bool = False) -> LayoutNode:
    leaves: List[LayoutNode] = []

    # Siblings are visited in traversal order, so the master group fills first
    def collect(node: LayoutNode) -> None:
        if not node.children:
            leaves.append(node)
        for child in sorted(node.children, key=lambda n: n.traversal_index):
            collect(child)

    collect(root)
    if reverse:
        leaves.reverse()
    for index, leaf in enumerate(leaves):
        leaf.traversal_index = index
    return root


class Cycle:
    """Delegates to one of several generators, chosen per tag.

    Example:
        cycler = Cycle([MasterStack(), Dwindle()])
        cycler.set_current_tag(tag_id)
        root = cycler.layout(window_count)
    """

    def __init__(self, generators: Iterable[Any]):
        self.generators = list(generators)
        if not self.generators:
            raise ValueError("Cycle needs at least one layout generator")
        self._indices: Dict[int, int] = {}
        self.current_tag: Optional[int] = None

    def set_current_tag(self, tag: Any) -> None:
        self.current_tag = getattr(tag, "id", tag)

    def current_index(self, tag: Any = None) -> int:
        tag_id = getattr(tag, "id", tag) if tag is not None else self.current_tag
        return self._indices.get(tag_id, 0)

    def cycle_layout_forward(self, tag: Any) -> None:
        tag_id = getattr(tag, "id", tag)
        self._indices[tag_id] = (self.current_index(tag_id) + 1) % len(self.generators)

    def cycle_layout_backward(self, tag: Any) -> None:
        tag_id = getattr(tag, "id", tag)
        self._indices[tag_id] = (self.current_index(tag_id) - 1) % len(self.generators)

    def current_generator(self) -> Any:
        return self.generators[self.current_index()]

    def current_tree_id(self) -> int:
        # 0 is reserved for the empty tree
        return self.current_index() + 1

    def layout(self, window_count: int) -> LayoutNode:
        return self.current_generator().layout(window_count)

    def __call__(self, args: Any) -> LayoutResponse:
        """Answer a layout request for the first active tag, for use with manage()."""
        args = LayoutArgs.model_validate(args)
        if not args.tags:
            return LayoutResponse(root_node=LayoutNode(), tree_id=0)
        self.set_current_tag(args.tags[0])
        return LayoutResponse(root_node=self.layout(args.window_count), tree_id=self.current_tree_id())


# Requests

LayoutFn = Callable[[LayoutArgs], Union[LayoutResponse, LayoutNode, Any]]


class LayoutRequester:
    """Asks the compositor to recompute layouts (e.g. after cycling)."""

    def __init__(self, section: "LayoutApi", handle: SignalHandle):
        self._section = section
        self.handle = handle

    async def request_layout(self, output: Optional[Union[OutputHandle, str]] = None) -> None:
        """Request a layout on an output (the focused output if None)."""
        output_name = output.name if isinstance(output, OutputHandle) else output
        await self._section.call("layout.request_layout", {"output": output_name})

    async def stop(self) -> None:
        """Stop answering layout requests."""
        await self.handle.disconnect()


def _to_response(result: Any) -> LayoutResponse:
    if isinstance(result, LayoutResponse):
        return result
    if isinstance(result, LayoutNode):
        return LayoutResponse(root_node=result)
    return LayoutResponse.model_validate(result)


class LayoutApi(ApiSection):
    """Layout management."""

    async def manage(self, fn: Any) -> LayoutRequester:
        """Answer the compositor's layout requests.

        Args:
            fn: Callable taking LayoutArgs and returning a LayoutResponse or
                LayoutNode, or a generator object with a layout(window_count) method

        Returns:
            LayoutRequester for manual layout requests
        """
        if not callable(fn) and callable(getattr(fn, "layout", None)):
            generator = fn

            def fn(args: LayoutArgs) -> LayoutNode:
                return generator.layout(args.window_count)

        require_callable("layout.manage", "fn", fn)
        client = self.client

        async def handler(event: Event) -> None:
            payload = dict(event.payload)
            request_id = payload.pop("request_id", None)
            args = LayoutArgs.model_validate(payload)
            response = _to_response(await invoke(client, fn, args))
            await client.call(
                "layout.respond",
                {
                    "request_id": request_id,
                    "output": args.output,
                    "tree_id": response.tree_id,
                    "root": response.root_node.to_wire(),
                },
            )

        category = EventCategory.LAYOUT_REQUEST.value
        subscription = await self.subscribe_acked(
            category, handler, None, "signal.connect", {"category": category}
        )
        logger.info("Managing layouts")
        return LayoutRequester(self, SignalHandle(self, category, subscription))
