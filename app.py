import time

import streamlit as st
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Rectangle
import requests

from input_surface import (DEFAULT_GRID_SIZE, MAX_GRID_SIZE, MIN_GRID_SIZE, blank_grid, load_grid, paint,
                           parse_points, stroke)
from numpy_conv import (
    ACTIVATIONS,
    ACTIVATION_LABELS,
    KERNEL_SIZES,
    ConvConfig,
    activation_curve,
    convolve_all,
    explain,
    generate_kernels,
    output_dim,
    receptive_field,
    scan_order,
)


ANIMATION_INTERVAL = 0.2
TRACE_PREVIEW_TERMS = 9

st.set_page_config(page_title="Convolution Visualizer", layout="wide")

st.markdown("""
<style>
    .main-header {font-size: 3rem; font-weight: 700; color: #1f77b4; margin-bottom: 0.5rem;}
    .subtitle {font-size: 1.2rem; color: #666; font-style: italic; margin-bottom: 2rem;}
    .info-box {background-color: #f0f8ff; padding: 1.5rem; border-radius: 10px;
               border-left: 5px solid #1f77b4; margin: 1rem 0; color: #333;}
    h1, h2, h3 {color: #1f77b4;}
    .stButton>button {border-radius: 20px; font-weight: 600; transition: all 0.3s;}
    .stButton>button:hover {transform: scale(1.05);}
</style>
""", unsafe_allow_html=True)


@st.cache_data
def load_kernels(k_size):
    return generate_kernels(k_size)


@st.cache_data
def compute_feature_maps(grid, grid_size, k_size, stride, padding, activation):
    config = ConvConfig(stride=stride, padding=padding, activation=activation)
    return convolve_all(grid, grid_size, load_kernels(k_size), config)


def plot_grid(data, dim, title, highlight=None, padding=0, show_values=False):
    fig, ax = plt.subplots(figsize=(4, 4))
    image = np.asarray(data).reshape(dim, dim)
    ax.imshow(image, cmap='gray', vmin=0, vmax=1)

    if show_values:
        for y in range(dim):
            for x in range(dim):
                ax.text(x, y, f'{image[y, x]:.1f}', ha='center', va='center', fontsize=6,
                        color='black' if image[y, x] > 0.5 else 'white')

    if padding > 0:
        ax.add_patch(Rectangle((-0.5 - padding, -0.5 - padding), dim + 2 * padding, dim + 2 * padding,
                               fill=False, edgecolor='#888', linestyle='--', linewidth=1))
    if highlight is not None:
        left, top, w, h = highlight
        ax.add_patch(Rectangle((left - 0.5, top - 0.5), w, h, fill=False, edgecolor='#3b82f6', linewidth=2.5))

    ax.set_xlim(-0.5 - padding, dim - 0.5 + padding)
    ax.set_ylim(dim - 0.5 + padding, -0.5 - padding)
    ax.set_title(f'{title} ({dim}×{dim})', fontsize=10)
    ax.axis('off')
    plt.tight_layout()
    return fig


def plot_kernels(kernels):
    kernels = list(kernels.values())
    fig, axes = plt.subplots(1, len(kernels), figsize=(12, 3))
    axes = [axes] if len(kernels) == 1 else axes

    for ax, kernel in zip(axes, kernels):
        ax.imshow(kernel.weights, cmap='gray')
        for (ky, kx), weight in np.ndenumerate(kernel.weights):
            ax.text(kx, ky, f'{weight:g}', ha='center', va='center', fontsize=8, color='#d62728')
        ax.axis('off')
        ax.set_title(kernel.name, fontsize=9)

    plt.tight_layout()
    return fig


def plot_feature_maps(feature_maps, selected_idx, coord, show_values=False):
    fig, axes = plt.subplots(1, len(feature_maps), figsize=(12, 3.5))
    axes = [axes] if len(feature_maps) == 1 else axes

    for i, (ax, fmap) in enumerate(zip(axes, feature_maps)):
        ax.imshow(fmap.grid, cmap='gray', vmin=0, vmax=1)
        if show_values and fmap.dim <= 14:
            for (y, x), val in np.ndenumerate(fmap.grid):
                ax.text(x, y, f'{val:.1f}', ha='center', va='center', fontsize=5,
                        color='black' if val > 0.5 else 'white')
        if i == selected_idx and coord is not None:
            x, y = coord
            ax.add_patch(Rectangle((x - 0.5, y - 0.5), 1, 1, fill=False, edgecolor='#ef4444', linewidth=2))
        ax.set_title(f'{fmap.name} ({fmap.dim}×{fmap.dim})', fontsize=9)
        ax.axis('off')

    plt.tight_layout()
    return fig


def plot_activation(name):
    xs, ys = activation_curve(name)
    fig, ax = plt.subplots(figsize=(3, 1.8))
    ax.axhline(0, color='#475569', linewidth=1)
    ax.axvline(0, color='#475569', linewidth=1)
    ax.plot(xs, ys, color='#3b82f6', linewidth=2)
    ax.set_title(ACTIVATION_LABELS[name], fontsize=9)
    ax.tick_params(labelsize=7)
    plt.tight_layout()
    return fig


def render_trace(trace, activation, hide_zero_terms=False):
    st.markdown(f'<div class="info-box">Analyzing: <strong>{trace.filter_name}</strong> at ({trace.x}, {trace.y})</div>',
                unsafe_allow_html=True)

    shown, hidden = trace.preview(TRACE_PREVIEW_TERMS, nonzero_only=hide_zero_terms)
    lines = []
    for i, term in enumerate(shown):
        value = '0 (pad)' if term.is_padding_cell else f'{term.input_value:.2f}'
        lines.append(f'({i}) {value:>8} × {term.weight:>3g} = {term.product:.2f}')
    if lines:
        st.code('\n'.join(lines), language=None)
    if hidden:
        st.caption(f'...and {hidden} more')

    col1, col2 = st.columns(2)
    with col1:
        st.metric("Sum", f"{trace.sum:.2f}")
    with col2:
        st.metric(f"{activation.upper()}(Sum)", f"{trace.activated_value:.2f}")


st.markdown('<h1 class="main-header">Convolution Visualizer</h1>', unsafe_allow_html=True)
st.markdown('<p class="subtitle">Paint an input, slide fixed kernels across it, and audit every output pixel</p>', unsafe_allow_html=True)

with st.expander("How it works", expanded=False):
    st.markdown("""
    Each output pixel is a **multiply-accumulate** over a small window of the input:
    the window values are multiplied by the kernel weights, summed, and passed through the activation.

    - **Stride** moves the window by more than one cell between outputs
    - **Padding** surrounds the input with virtual zero cells
    - The kernel is applied without flipping (cross-correlation), as CNN layers do
    """)

for key, default in [
    ('grid', blank_grid(DEFAULT_GRID_SIZE)),
    ('grid_size', DEFAULT_GRID_SIZE),
    ('animating', False),
    ('scan_index', 0),
    ('scan_key', None),
    ('upload_token', None),
]:
    if key not in st.session_state:
        st.session_state[key] = default

# sidebar: configuration
st.sidebar.markdown("## Input")
grid_size = st.sidebar.slider("grid size", min_value=MIN_GRID_SIZE, max_value=MAX_GRID_SIZE, value=DEFAULT_GRID_SIZE,
                              key='input_size')
if grid_size != st.session_state.grid_size:
    st.session_state.grid = blank_grid(grid_size)
    st.session_state.grid_size = grid_size
    st.session_state.upload_token = None

st.sidebar.markdown("---")
st.sidebar.markdown("## Convolution")
k_size = st.sidebar.radio("kernel size", KERNEL_SIZES, format_func=lambda s: f"{s}x{s}", horizontal=True,
                          key='kernel_size')
stride = st.sidebar.slider("stride", min_value=1, max_value=3, value=1, key='stride')
padding = st.sidebar.slider("padding", min_value=0, max_value=2, value=0, help="0 = valid convolution",
                            key='padding')
activation = st.sidebar.selectbox("activation", list(ACTIVATIONS), format_func=ACTIVATION_LABELS.get,
                                  key='activation')
st.sidebar.pyplot(plot_activation(activation))

st.sidebar.markdown("---")
st.sidebar.markdown("## Display")
show_values = st.sidebar.checkbox("show values", value=True)
hide_zero_terms = st.sidebar.checkbox("hide zero terms", value=False)

config = ConvConfig(stride=stride, padding=padding, activation=activation)
kernels = load_kernels(k_size)
kernel_list = list(kernels.values())
selected_idx = st.sidebar.selectbox("kernel to inspect", range(len(kernel_list)),
                                    format_func=lambda i: kernel_list[i].name)
selected_kernel = kernel_list[selected_idx]

out_dim = output_dim(grid_size, k_size, stride, padding)
positions = scan_order(out_dim)

# restart the scan whenever the geometry or the inspected kernel changes
scan_key = (grid_size, k_size, stride, padding, selected_idx)
if scan_key != st.session_state.scan_key:
    st.session_state.scan_key = scan_key
    st.session_state.scan_index = 0

st.sidebar.markdown("---")
if st.sidebar.button("Pause scan" if st.session_state.animating else "Animate scan", use_container_width=True):
    st.session_state.animating = not st.session_state.animating
    st.rerun()

coord = None
if positions:
    if st.session_state.animating:
        coord = positions[st.session_state.scan_index % len(positions)]
    else:
        for key in ('out_x', 'out_y'):
            st.session_state[key] = min(st.session_state.get(key, 0), out_dim - 1)
        col1, col2 = st.sidebar.columns(2)
        with col1:
            out_x = st.number_input("output x", min_value=0, max_value=out_dim - 1, key='out_x')
        with col2:
            out_y = st.number_input("output y", min_value=0, max_value=out_dim - 1, key='out_y')
        coord = (int(out_x), int(out_y))

col_input, col_math = st.columns([1, 1])

with col_input:
    st.subheader("Input Layer")

    uploaded = st.file_uploader("upload image", type=['png', 'jpg', 'jpeg', 'bmp', 'gif'])
    if uploaded is not None and (uploaded.name, uploaded.size) != st.session_state.upload_token:
        try:
            st.session_state.grid = load_grid(uploaded, grid_size)
            st.session_state.upload_token = (uploaded.name, uploaded.size)
        except OSError as e:
            st.warning(f"Could not read image: {e}")

    url = st.text_input("or image URL")
    if url and st.button("Load URL"):
        try:
            st.session_state.grid = load_grid(url, grid_size)
        except (OSError, requests.RequestException) as e:
            st.warning(f"Could not load image: {e}")

    col1, col2, col3 = st.columns([1, 1, 2])
    with col1:
        paint_x = st.number_input("paint x", min_value=0, max_value=grid_size - 1, value=grid_size // 2)
    with col2:
        paint_y = st.number_input("paint y", min_value=0, max_value=grid_size - 1, value=grid_size // 2)
    with col3:
        if st.button("Paint", key='paint', use_container_width=True):
            st.session_state.grid = paint(st.session_state.grid, grid_size, int(paint_x), int(paint_y))
        if st.button("Clear", key='clear', use_container_width=True):
            st.session_state.grid = blank_grid(grid_size)

    points_text = st.text_input("stroke through cells", placeholder="2,3 3,3 4,3", key='stroke_points')
    if points_text and st.button("Stroke", key='stroke'):
        try:
            st.session_state.grid = stroke(st.session_state.grid, grid_size, parse_points(points_text))
        except ValueError as e:
            st.warning(f"Could not read points: {e}")

    grid = st.session_state.grid
    highlight = receptive_field(coord[0], coord[1], k_size, config) if coord is not None else None
    st.pyplot(plot_grid(grid, grid_size, "Input", highlight=highlight, padding=padding, show_values=show_values))

with col_math:
    st.subheader("Convolution Math")
    if coord is None:
        st.info(f"A {k_size}x{k_size} kernel does not fit a {grid_size}x{grid_size} input with padding {padding}: every feature map is empty.")
    else:
        trace = explain(grid, grid_size, selected_kernel, config, *coord)
        render_trace(trace, activation, hide_zero_terms)

st.markdown("---")
st.subheader("Kernels")
st.caption(f"Kernel: {k_size}x{k_size} | Stride: {stride} | Pad: {padding}")
st.pyplot(plot_kernels(kernels))

st.subheader("Feature Maps")
feature_maps = compute_feature_maps(grid, grid_size, k_size, stride, padding, activation)
if out_dim > 0:
    st.pyplot(plot_feature_maps(feature_maps, selected_idx, coord, show_values=show_values))
else:
    st.info("No feature maps to draw.")
plt.close('all')

st.sidebar.markdown("---")
st.sidebar.markdown("""
<div style='text-align: center; color: #666; font-size: 0.9rem;'>
    <p><strong>Implementation Details</strong></p>
    <p>NumPy sliding windows • Fixed kernels</p>
    <p>Educational Tool for Convolution Fundamentals</p>
</div>
""", unsafe_allow_html=True)

if st.session_state.animating and positions:
    time.sleep(ANIMATION_INTERVAL)
    st.session_state.scan_index = (st.session_state.scan_index + 1) % len(positions)
    st.rerun()
