import heapq
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, List, Mapping, Optional

from bitops import BitReader, BitWriter
from errors import CodeLengthOverflow, CorruptPayload, EmptyInput

logger = logging.getLogger(__name__)

MAX_CODE_LENGTH = 64  #: Widest bit pattern a code may have


@dataclass
class TreeNode:
    """Node of an arena-allocated Huffman tree.

    Children are integer handles into :attr:`HuffmanTree.nodes`.

    :ivar weight: Sum of the frequencies of the leaves below this node.
    :type weight: int
    :ivar symbol: Symbol stored at a leaf; ``None`` for internal nodes.
    :type symbol: Hashable | None
    :ivar left: Handle of the ``0`` child, if any.
    :type left: int | None
    :ivar right: Handle of the ``1`` child, if any.
    :type right: int | None
    """

    weight: int
    symbol: Optional[Hashable] = None
    left: Optional[int] = None
    right: Optional[int] = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None and self.right is None


class HuffmanTree:
    """Binary prefix tree stored as a flat list of :class:`TreeNode`.

    :ivar nodes: Node arena; handles are indices into this list.
    :type nodes: List[TreeNode]
    :ivar root: Handle of the root node.
    :type root: int
    """

    def __init__(self):
        self.nodes: List[TreeNode] = []
        self.root = 0

    def add_node(self, node: TreeNode) -> int:
        """Append ``node`` to the arena.

        :param node: Node to store.
        :type node: TreeNode
        :returns: The handle of the stored node.
        :rtype: int
        """
        self.nodes.append(node)
        return len(self.nodes) - 1

    @property
    def weight(self) -> int:
        return self.nodes[self.root].weight

    def leaf_count(self) -> int:
        return sum(1 for node in self.nodes if node.is_leaf)

    def depth(self) -> int:
        """Length of the longest root-to-leaf path (0 for a lone leaf)."""
        deepest = 0
        stack = [(self.root, 0)]
        while stack:
            handle, depth = stack.pop()
            node = self.nodes[handle]
            deepest = max(deepest, depth)
            for child in (node.left, node.right):
                if child is not None:
                    stack.append((child, depth + 1))
        return deepest


@dataclass(frozen=True)
class Code:
    """Prefix code assigned to one symbol.

    :ivar symbol: The encoded symbol.
    :type symbol: Hashable
    :ivar bits: Bit pattern, most significant meaningful bit first.
    :type bits: int
    :ivar length: Number of meaningful bits in ``bits`` (at least 1).
    :type length: int
    """

    symbol: Hashable
    bits: int
    length: int

    @property
    def bit_string(self) -> str:
        """The code as a string of ``0``/``1`` characters."""
        return format(self.bits, f"0{self.length}b")

    def is_prefix_of(self, other: "Code") -> bool:
        """Tell whether this code is a prefix of ``other`` (or equal to it).

        :param other: Code to compare with.
        :type other: Code
        :rtype: bool
        """
        if self.length > other.length:
            return False
        return other.bits >> (other.length - self.length) == self.bits


def count_frequencies(symbols: Iterable[Hashable]) -> Dict[Hashable, int]:
    """Count how often every symbol occurs.

    :param symbols: Input symbols (``bytes`` yields ints, ``str`` yields
                    characters).
    :type symbols: Iterable[Hashable]
    :returns: Mapping from symbol to occurrence count; empty for empty input.
    :rtype: Dict[Hashable, int]
    """
    return dict(Counter(symbols))


def build_tree(frequencies: Mapping[Hashable, int]) -> HuffmanTree:
    """Build a Huffman tree by repeatedly merging the two lightest nodes.

    Ties are broken by a sequence number: leaves are numbered in ascending
    symbol order, merged nodes continue the numbering, and the lower number
    is popped first. The first node popped becomes the left child.

    :param frequencies: Mapping from symbol to positive count.
    :type frequencies: Mapping[Hashable, int]
    :returns: The tree; a single leaf when only one symbol is present.
    :rtype: HuffmanTree
    :raises EmptyInput: If ``frequencies`` is empty.
    :raises ValueError: If a count is not positive.
    """
    if not frequencies:
        raise EmptyInput("Cannot build a Huffman tree without symbols")

    tree = HuffmanTree()
    heap = []
    for symbol in sorted(frequencies):
        weight = frequencies[symbol]
        if weight <= 0:
            raise ValueError(f"Frequency of {symbol!r} must be positive, got {weight}")
        handle = tree.add_node(TreeNode(weight, symbol=symbol))
        heap.append((weight, handle))
    heapq.heapify(heap)

    # Handles grow monotonically, so they double as insertion sequence numbers.
    while len(heap) > 1:
        left_weight, left = heapq.heappop(heap)
        right_weight, right = heapq.heappop(heap)
        weight = left_weight + right_weight
        handle = tree.add_node(TreeNode(weight, left=left, right=right))
        heapq.heappush(heap, (weight, handle))

    tree.root = heap[0][1]
    logger.debug("Built tree: %d symbols, weight %d, depth %d",
                 len(frequencies), tree.weight, tree.depth())
    return tree


def walk_codes(tree: HuffmanTree, max_length: int = MAX_CODE_LENGTH) -> List[Code]:
    """Assign a code to every leaf, in depth-first (left first) order.

    :param tree: Tree to walk.
    :type tree: HuffmanTree
    :param max_length: Longest code allowed.
    :type max_length: int
    :returns: Codes in traversal order.
    :rtype: List[Code]
    :raises CodeLengthOverflow: If a leaf is deeper than ``max_length``.
    """
    root = tree.nodes[tree.root]
    if root.is_leaf:
        return [Code(root.symbol, 0, 1)]

    codes = []
    stack = [(tree.root, 0, 0)]
    while stack:
        handle, bits, length = stack.pop()
        node = tree.nodes[handle]
        if node.is_leaf:
            if length > max_length:
                raise CodeLengthOverflow(
                    f"Code for {node.symbol!r} needs {length} bits, "
                    f"limit is {max_length}"
                )
            codes.append(Code(node.symbol, bits, length))
            continue
        # Right is pushed first so the left subtree is visited first.
        if node.right is not None:
            stack.append((node.right, (bits << 1) | 1, length + 1))
        if node.left is not None:
            stack.append((node.left, bits << 1, length + 1))
    return codes


def generate_codes(tree: HuffmanTree, max_length: int = MAX_CODE_LENGTH) -> Dict[Hashable, Code]:
    """Map every symbol of ``tree`` to its code.

    :param tree: Tree built by :func:`build_tree`.
    :type tree: HuffmanTree
    :param max_length: Longest code allowed.
    :type max_length: int
    :returns: Mapping from symbol to :class:`Code`.
    :rtype: Dict[Hashable, Code]
    :raises CodeLengthOverflow: If a code would exceed ``max_length`` bits.
    """
    return {code.symbol: code for code in walk_codes(tree, max_length)}


def canonical_codes(code_lengths: Mapping[Hashable, int]) -> Dict[Hashable, Code]:
    """Assign canonical codes from code lengths alone.

    Symbols are ordered by ``(length, symbol)``; each gets the previous code
    plus one, shifted left whenever the length grows.

    :param code_lengths: Mapping from symbol to code length.
    :type code_lengths: Mapping[Hashable, int]
    :returns: Mapping from symbol to :class:`Code`.
    :rtype: Dict[Hashable, Code]
    """
    codes = {}
    code = 0
    prev_length = 0
    for symbol in sorted(code_lengths, key=lambda s: (code_lengths[s], s)):
        length = code_lengths[symbol]
        code <<= (length - prev_length)
        codes[symbol] = Code(symbol, code, length)
        code += 1
        prev_length = length
    return codes


def tree_from_codes(codes: Mapping[Hashable, Code]) -> HuffmanTree:
    """Rebuild a decoding tree from a prefix code mapping.

    Node weights are not recoverable from codes and are left at zero.

    :param codes: Mapping from symbol to :class:`Code`.
    :type codes: Mapping[Hashable, Code]
    :returns: Tree whose leaves sit at the code paths.
    :rtype: HuffmanTree
    :raises EmptyInput: If ``codes`` is empty.
    :raises CorruptPayload: If the codes are not prefix-free.
    """
    if not codes:
        raise EmptyInput("Cannot build a decoding tree without codes")

    tree = HuffmanTree()
    if len(codes) == 1:
        code = next(iter(codes.values()))
        if code.length == 1 and code.bits == 0:
            tree.root = tree.add_node(TreeNode(0, symbol=code.symbol))
            return tree

    tree.root = tree.add_node(TreeNode(0))
    for code in codes.values():
        node = tree.nodes[tree.root]
        for i in range(code.length - 1, -1, -1):
            if node.symbol is not None:
                raise CorruptPayload(f"Code for {node.symbol!r} is a prefix of another code")
            side = "right" if (code.bits >> i) & 1 else "left"
            child = getattr(node, side)
            if child is None:
                child = tree.add_node(TreeNode(0))
                setattr(node, side, child)
            node = tree.nodes[child]
        if node.symbol is not None or not node.is_leaf:
            raise CorruptPayload(f"Code for {code.symbol!r} collides with another code")
        node.symbol = code.symbol
    return tree


class CanonicalHuffman:
    """Canonical Huffman encoder/decoder over byte symbols.

    Code lengths come from a Huffman tree; the codes themselves are
    re-derived canonically so only the lengths need to be stored.

    :ivar code_lengths: Mapping from symbol to code length (in bits).
    :type code_lengths: Dict[int, int]
    :ivar codes: Mapping from symbol to its canonical :class:`Code`.
    :type codes: Dict[int, Code]
    :ivar symbols: Symbols in ``(length, symbol)`` order.
    :type symbols: List[int]
    """

    SYMBOL_BITS = 8
    LENGTH_BITS = 7
    COUNT_BITS = 16

    def __init__(self, max_length: int = MAX_CODE_LENGTH):
        """Initialize empty canonical Huffman structures.

        :param max_length: Longest code allowed.
        :type max_length: int
        :returns: None
        :rtype: None
        """
        self.max_length = max_length
        self.code_lengths: Dict[int, int] = {}
        self.codes: Dict[int, Code] = {}
        self.symbols: List[int] = []

    def build_from_frequencies(self, frequencies: Mapping[int, int]):
        """Build canonical codes from a symbol frequency table.

        An empty table leaves the coder empty (nothing to encode).

        :param frequencies: Mapping from symbol to observed frequency.
        :type frequencies: Mapping[int, int]
        :returns: None
        :rtype: None
        :raises CodeLengthOverflow: If a code exceeds ``max_length`` bits.
        """
        self.code_lengths = {}
        if frequencies:
            tree = build_tree(frequencies)
            self.code_lengths = {
                code.symbol: code.length
                for code in walk_codes(tree, self.max_length)
            }
        self._generate_canonical_codes()

    def _generate_canonical_codes(self):
        self.codes = canonical_codes(self.code_lengths)
        self.symbols = list(self.codes)

    def encode_symbol(self, symbol: int) -> Code:
        """Get the canonical code for a symbol.

        :param symbol: Symbol to encode.
        :type symbol: int
        :returns: The symbol's code.
        :rtype: Code
        :raises ValueError: If ``symbol`` has no code.
        """
        try:
            return self.codes[symbol]
        except KeyError:
            raise ValueError(f"Symbol {symbol!r} is not in the code table") from None

    def decode_tree(self) -> HuffmanTree:
        """Build the tree used to decode the current codes."""
        return tree_from_codes(self.codes)

    def save_metadata(self) -> bytes:
        """Serialize code lengths for later reconstruction.

        The format stores the number of symbols (16 bits), and for each
        symbol in ``(length, symbol)`` order its value (8 bits) followed by
        its code length (7 bits), zero-padded to a whole byte.

        :returns: Serialized metadata bytes.
        :rtype: bytes
        :raises ValueError: If a symbol does not fit in 8 bits.
        """
        data = BitWriter()
        data.write_bits(len(self.symbols), self.COUNT_BITS)
        for symbol in self.symbols:
            if not isinstance(symbol, int) or not 0 <= symbol < (1 << self.SYMBOL_BITS):
                raise ValueError(f"Symbol {symbol!r} does not fit in a byte")
            data.write_bits(symbol, self.SYMBOL_BITS)
            data.write_bits(self.code_lengths[symbol], self.LENGTH_BITS)
        return data.flush()

    def load_metadata(self, data: bytes) -> int:
        """Load code lengths from serialized metadata and regenerate codes.

        :param data: Serialized metadata produced by :meth:`save_metadata`.
        :type data: bytes
        :returns: Number of bytes consumed from ``data`` while reading metadata.
        :rtype: int
        :raises TruncatedStream: If the metadata is truncated.
        :raises CorruptPayload: If the lengths cannot form a prefix code.
        """
        reader = BitReader(data)
        num_symbols = reader.read_bits(self.COUNT_BITS)
        if num_symbols > (1 << self.SYMBOL_BITS):
            raise CorruptPayload(f"Code table lists {num_symbols} symbols")
        self.code_lengths = {}
        for _ in range(num_symbols):
            symbol = reader.read_bits(self.SYMBOL_BITS)
            length = reader.read_bits(self.LENGTH_BITS)
            if not 1 <= length <= self.max_length:
                raise CorruptPayload(f"Invalid code length {length} for symbol {symbol}")
            if symbol in self.code_lengths:
                raise CorruptPayload(f"Symbol {symbol} listed twice in code table")
            self.code_lengths[symbol] = length

        # Kraft inequality: sum(2 ** -length) <= 1
        kraft = sum(1 << (self.max_length - n) for n in self.code_lengths.values())
        if kraft > (1 << self.max_length):
            raise CorruptPayload("Code lengths do not form a prefix code")

        self._generate_canonical_codes()
        return reader.pos
