from dataclasses import dataclass
from enum import Enum

import numpy as np
from numpy.lib.stride_tricks import as_strided
from scipy.special import expit


KERNEL_SIZES = (3, 5)


class ContractViolation(ValueError):
    """Raised when a caller passes a configuration the engine cannot honour."""


class KernelKind(Enum):
    HORIZONTAL_EDGE = 'horizontal'
    VERTICAL_EDGE = 'vertical'
    SHARPEN = 'sharpen'
    EMBOSS = 'emboss'


@dataclass(frozen=True)
class Kernel:
    kind: KernelKind
    name: str
    weights: np.ndarray

    @property
    def size(self):
        return self.weights.shape[0]


def _is_int(value):
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


def _check_kernel_size(k_size):
    if not _is_int(k_size) or k_size < 3 or k_size % 2 == 0:
        raise ContractViolation(f"kernel size must be an odd integer >= 3, got {k_size!r}")


def _horizontal_edge(k_size):
    weights = np.full((k_size, k_size), -1, dtype=np.float32)
    weights[k_size // 2, :] = 2
    return weights


def _vertical_edge(k_size):
    weights = np.full((k_size, k_size), -1, dtype=np.float32)
    weights[:, k_size // 2] = 2
    return weights


def _sharpen(k_size):
    center = k_size // 2
    weights = np.zeros((k_size, k_size), dtype=np.float32)
    weights[center, center] = 5 if k_size == 3 else 9
    # 5x5 gets the stronger center only, no neighbour ring
    if k_size == 3:
        weights[0, 1] = weights[1, 0] = weights[1, 2] = weights[2, 1] = -1
    return weights


def _emboss(k_size):
    if k_size == 3:
        return np.array([[-2, -1, 0],
                         [-1, 1, 1],
                         [0, 1, 2]], dtype=np.float32)
    # identity for every other size
    center = k_size // 2
    weights = np.zeros((k_size, k_size), dtype=np.float32)
    weights[center, center] = 1
    return weights


_KERNEL_GENERATORS = {
    KernelKind.HORIZONTAL_EDGE: ('Horizontal Edge', _horizontal_edge),
    KernelKind.VERTICAL_EDGE: ('Vertical Edge', _vertical_edge),
    KernelKind.SHARPEN: ('Sharpen', _sharpen),
    KernelKind.EMBOSS: ('Emboss (3x3)', _emboss),
}


def generate_kernels(k_size):
    """Build the fixed kernel bank for an odd kernel size.

    Returns a dict keyed by KernelKind, in display order. Every call builds
    fresh read-only weight arrays, so callers must re-fetch after a size change.
    """
    _check_kernel_size(k_size)
    kernels = {}
    for kind in KernelKind:
        name, build = _KERNEL_GENERATORS[kind]
        weights = build(k_size)
        weights.setflags(write=False)
        kernels[kind] = Kernel(kind=kind, name=name, weights=weights)
    return kernels


def _relu(x):
    return np.maximum(x, 0)


def _identity(x):
    return x


ACTIVATIONS = {
    'relu': _relu,
    'sigmoid': expit,
    'tanh': np.tanh,
    'none': _identity,
}

ACTIVATION_LABELS = {
    'relu': 'ReLU',
    'sigmoid': 'Sigmoid',
    'tanh': 'Tanh',
    'none': 'No Act.',
}


def get_activation(name):
    try:
        return ACTIVATIONS[name]
    except (KeyError, TypeError):
        raise ContractViolation(f"unknown activation {name!r}, expected one of {sorted(ACTIVATIONS)}") from None


def activation_curve(name, span=10):
    # integer samples for the small preview plot
    fn = get_activation(name)
    xs = np.arange(-span, span + 1, dtype=np.float32)
    return xs, np.asarray(fn(xs), dtype=np.float32)


@dataclass(frozen=True)
class ConvConfig:
    stride: int = 1
    padding: int = 0
    activation: str = 'relu'

    def __post_init__(self):
        if not _is_int(self.stride) or self.stride < 1:
            raise ContractViolation(f"stride must be a positive integer, got {self.stride!r}")
        if not _is_int(self.padding) or self.padding < 0:
            raise ContractViolation(f"padding must be a non-negative integer, got {self.padding!r}")
        get_activation(self.activation)


@dataclass(frozen=True)
class FeatureMap:
    name: str
    dim: int
    data: np.ndarray

    @property
    def grid(self):
        return self.data.reshape(self.dim, self.dim)

    def value_at(self, x, y):
        return float(self.data[y * self.dim + x])


@dataclass(frozen=True)
class TraceTerm:
    input_value: float
    weight: float
    product: float
    is_padding_cell: bool


@dataclass(frozen=True)
class MathTrace:
    filter_name: str
    x: int
    y: int
    terms: tuple
    sum: float
    activated_value: float

    def nonzero_terms(self):
        return tuple(term for term in self.terms if term.product != 0)

    def preview(self, limit=9, nonzero_only=False):
        terms = self.nonzero_terms() if nonzero_only else self.terms
        shown = terms[:limit]
        return shown, len(terms) - len(shown)


def as_matrix(values, input_dim):
    """Normalize a flat or (dim, dim) input into a float32 (dim, dim) array."""
    if not _is_int(input_dim) or input_dim < 1:
        raise ContractViolation(f"input dimension must be a positive integer, got {input_dim!r}")
    x = np.asarray(values, dtype=np.float32)
    if x.shape not in ((input_dim * input_dim,), (input_dim, input_dim)):
        raise ContractViolation(f"expected {input_dim}x{input_dim} values, got shape {x.shape}")
    x = x.reshape(input_dim, input_dim)
    if not np.all(np.isfinite(x)):
        raise ContractViolation("input matrix contains non-finite values")
    return x


def output_dim(input_dim, k_size, stride, padding=0):
    return (input_dim + 2 * padding - k_size) // stride + 1


def _pad_input(x, padding):
    if padding == 0:
        return x
    return np.pad(x, ((padding, padding), (padding, padding)), mode='constant')


def _im2col(x, kernel, stride, padding):
    # one row per output pixel, row-major over (ky, kx) inside each row
    x_padded = _pad_input(x, padding)
    H_p, W_p = x_padded.shape
    out_h = (H_p - kernel) // stride + 1
    out_w = (W_p - kernel) // stride + 1
    shape = (out_h, out_w, kernel, kernel)
    strides = (
        x_padded.strides[0] * stride,
        x_padded.strides[1] * stride,
        x_padded.strides[0],
        x_padded.strides[1],
    )
    windows = as_strided(x_padded, shape=shape, strides=strides, writeable=False)
    cols = np.ascontiguousarray(windows.reshape(out_h * out_w, kernel * kernel), dtype=np.float32)
    return cols, out_h, out_w


def _products(cols, kernel):
    return cols * kernel.weights.reshape(1, -1)


def _weighted_sums(products):
    # shared by convolve and explain so the trace sum matches the map bit for bit
    return products.sum(axis=1, dtype=np.float32)


def _empty_map(kernel):
    return FeatureMap(name=kernel.name, dim=0, data=np.zeros(0, dtype=np.float32))


def convolve(values, input_dim, kernel, config):
    """Slide one kernel over the input (cross-correlation, no flip).

    Reads outside the input are zero. Returns an empty FeatureMap when the
    kernel does not fit.
    """
    x = as_matrix(values, input_dim)
    activation = get_activation(config.activation)
    out_dim = output_dim(input_dim, kernel.size, config.stride, config.padding)
    if out_dim <= 0:
        return _empty_map(kernel)
    cols, out_h, out_w = _im2col(x, kernel.size, config.stride, config.padding)
    raw = _weighted_sums(_products(cols, kernel))
    data = np.asarray(activation(raw), dtype=np.float32)
    return FeatureMap(name=kernel.name, dim=out_dim, data=data)


def convolve_all(values, input_dim, kernels, config):
    if isinstance(kernels, dict):
        kernels = kernels.values()
    return [convolve(values, input_dim, kernel, config) for kernel in kernels]


def explain(values, input_dim, kernel, config, x, y):
    x_in = as_matrix(values, input_dim)
    activation = get_activation(config.activation)
    k_size = kernel.size
    out_dim = output_dim(input_dim, k_size, config.stride, config.padding)
    if not (_is_int(x) and _is_int(y) and 0 <= x < out_dim and 0 <= y < out_dim):
        raise ContractViolation(f"output coordinate ({x}, {y}) outside a {max(out_dim, 0)}x{max(out_dim, 0)} feature map")

    cols, _, out_w = _im2col(x_in, k_size, config.stride, config.padding)
    row = y * out_w + x
    products = _products(cols[row:row + 1], kernel)
    total = _weighted_sums(products)[0]

    left, top, _, _ = receptive_field(x, y, k_size, config)
    weights = kernel.weights.reshape(-1)
    terms = []
    for i in range(k_size * k_size):
        ky, kx = divmod(i, k_size)
        iy, ix = top + ky, left + kx
        terms.append(TraceTerm(
            input_value=float(cols[row, i]),
            weight=float(weights[i]),
            product=float(products[0, i]),
            is_padding_cell=not (0 <= iy < input_dim and 0 <= ix < input_dim),
        ))

    return MathTrace(
        filter_name=kernel.name,
        x=x,
        y=y,
        terms=tuple(terms),
        sum=float(total),
        activated_value=float(np.float32(activation(total))),
    )


def receptive_field(x, y, k_size, config):
    return (x * config.stride - config.padding, y * config.stride - config.padding, k_size, k_size)


def scan_order(out_dim):
    if out_dim <= 0:
        return []
    return [(x, y) for y in range(out_dim) for x in range(out_dim)]
