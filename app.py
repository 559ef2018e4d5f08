import streamlit as st
import numpy as np
import torch
import asyncio
import cv2
import io
import logging
import warnings
from PIL import Image

# 🛡️ WARNING SHIELD: Silence technical chatter from AI libraries
warnings.filterwarnings("ignore", category=FutureWarning)
warnings.filterwarnings("ignore", category=UserWarning)
logging.getLogger("timm").setLevel(logging.ERROR)
logging.getLogger("mobile_sam").setLevel(logging.ERROR)

from streamlit_image_coordinates import streamlit_image_coordinates
from streamlit_image_comparison import image_comparison

from paint_core.canvas import CanvasController
from paint_core.color_space import rgb_to_hex
from paint_core.config import ModelConfig
from paint_core.errors import PaintCoreError
from paint_core.illumination import ALGORITHMS, create_strategy
from paint_core.image_ops import LIGHTING_PRESETS, WhiteBalance, auto_white_balance
from paint_core.model_store import ModelStore
from paint_core.segmentation import SegmentationEngine
from paint_core.session import PaintSession

logger = logging.getLogger(__name__)

APP_VERSION = "2.0.0"
MAX_DIM = 1024
INTRINSIC_MODEL_PATH = f"{ModelConfig.MODEL_DIR}/niid_net.onnx"


# --- CONFIGURATION & STYLES ---
def setup_page():
    st.set_page_config(
        page_title="Color Visualizer Studio",
        page_icon="🎨",
        layout="wide",
        initial_sidebar_state="expanded"
    )


def setup_styles():
    st.markdown("""
        <style>
        #MainMenu {visibility: hidden;}
        footer {visibility: hidden;}
        div.stButton > button {
            border-radius: 30px;
            width: 100%;
            text-transform: uppercase;
            font-size: 0.80rem;
        }
        </style>
    """, unsafe_allow_html=True)


# --- MODEL MANAGEMENT ---
@st.cache_resource
def get_sam_engine(model_key):
    """Download (once), load and cache the segmentation engine globally."""
    store = ModelStore()
    info = store.get_model_info(model_key)
    files = store.get_model_files(model_key, on_status=logger.info)
    device = "cuda" if torch.cuda.is_available() else "cpu"
    engine = SegmentationEngine.from_model_files(files, backend_name=info.backend, device=device)
    engine.initialize()
    return engine


@st.cache_resource
def get_intrinsic_net(path):
    from paint_core.intrinsic import IntrinsicNet
    net = IntrinsicNet(path)
    net.initialize()
    return net


def build_strategy(name):
    if name == "intrinsic":
        return create_strategy(name, net=get_intrinsic_net(INTRINSIC_MODEL_PATH))
    return create_strategy(name)


def run(coro):
    """Drive a controller coroutine from the (synchronous) script run."""
    return asyncio.run(coro)


def initialize_session_state():
    defaults = {
        "session": PaintSession(),
        "image_path": None,
        "picked_color": "#ff4b4b",
        "algorithm": "retinex",
        "last_click": None,
        "render_id": 0,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


def load_upload(uploaded_file, session):
    file_bytes = np.asarray(bytearray(uploaded_file.read()), dtype=np.uint8)
    image = cv2.imdecode(file_bytes, 1)
    image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

    # Work image: the encoder canvas is 1024px anyway
    h, w = image.shape[:2]
    if max(h, w) > MAX_DIM:
        scale = MAX_DIM / max(h, w)
        image = cv2.resize(image, (int(w * scale), int(h * scale)), interpolation=cv2.INTER_AREA)

    session.load_image(image, auto_white_balance(image), strategy=build_strategy(st.session_state["algorithm"]))
    st.session_state["image_path"] = uploaded_file.name
    st.session_state["last_click"] = None


# --- UI COMPONENTS ---
def render_sidebar(session, device_str):
    with st.sidebar:
        st.title("🎨 Visualizer Studio")
        st.caption(f"App Version: {APP_VERSION}")
        st.caption(f"AI Engine: {device_str}")

        algorithm = st.selectbox("Recolor Method", list(ALGORITHMS), format_func=ALGORITHMS.get,
                                 index=list(ALGORITHMS).index(st.session_state["algorithm"]))
        if algorithm != st.session_state["algorithm"]:
            if len(session.surfaces):
                st.warning("Reset the image before switching the recolor method.")
            else:
                try:
                    if session.has_image:
                        session.set_algorithm(build_strategy(algorithm))
                    st.session_state["algorithm"] = algorithm
                except PaintCoreError as e:
                    st.error(f"Could not load the recolor model: {e}")

        uploaded_file = st.file_uploader("Start Project", type=["jpg", "png", "jpeg"], label_visibility="collapsed")
        if uploaded_file is not None and st.session_state.get("image_path") != uploaded_file.name:
            load_upload(uploaded_file, session)

        st.session_state["picked_color"] = st.color_picker("Surface Color", st.session_state["picked_color"])

        if not session.has_image:
            return

        with st.expander("White Balance"):
            wb = session.white_balance
            r = st.slider("Red", 0.5, 1.5, float(wb.r), 0.01)
            g = st.slider("Green", 0.5, 1.5, float(wb.g), 0.01)
            b = st.slider("Blue", 0.5, 1.5, float(wb.b), 0.01)
            if st.button("Auto"):
                session.set_white_balance(auto_white_balance(session.original_image))
                st.rerun()
            elif (r, g, b) != (wb.r, wb.g, wb.b):
                session.set_white_balance(WhiteBalance(r, g, b))

        lighting = st.selectbox("Lighting", list(LIGHTING_PRESETS),
                                index=list(LIGHTING_PRESETS).index(session.lighting))
        session.set_lighting(lighting)

        c1, c2, c3 = st.columns(3)
        if c1.button("Undo", disabled=not session.history.can_undo):
            session.undo()
            st.rerun()
        if c2.button("Redo", disabled=not session.history.can_redo):
            session.redo()
            st.rerun()
        if c3.button("Reset"):
            session.reset()
            st.rerun()

        render_groups(session)


def render_groups(session):
    st.subheader("Groups")
    new_name = st.text_input("Group name", key="new_group_name")
    if st.button("Add Group"):
        try:
            session.add_group(new_name, st.session_state["picked_color"])
        except ValueError as e:
            st.error(str(e))

    options = [None] + [g.id for g in session.surfaces.groups]
    labels = {None: "Other"}
    labels.update({g.id: g.name for g in session.surfaces.groups})

    for group in session.surfaces.groups:
        with st.expander(group.name, expanded=True):
            color = st.color_picker("Group color", group.color, key=f"gc_{group.id}")
            if color != group.color:
                session.set_group_color(group.id, color)
            if st.button("Delete group", key=f"gd_{group.id}"):
                session.remove_group(group.id)
                st.rerun()

    for surface in session.surfaces.surfaces:
        cols = st.columns([3, 3, 1])
        enabled = cols[0].checkbox(surface.id, value=surface.enabled, key=f"se_{surface.id}")
        if enabled != surface.enabled:
            session.toggle_surface(surface.id)
        target = cols[1].selectbox("Group", options, format_func=labels.get,
                                   index=options.index(surface.group_id), key=f"sg_{surface.id}",
                                   label_visibility="collapsed")
        if target != surface.group_id:
            session.assign_to_group(surface.id, target)
        if cols[2].button("🗑", key=f"sd_{surface.id}"):
            session.remove_surface(surface.id)
            st.rerun()


def main():
    setup_page()
    setup_styles()
    initialize_session_state()
    session = st.session_state["session"]

    device_str = "CUDA" if torch.cuda.is_available() else "CPU"
    placeholder = st.empty()
    with placeholder.container():
        with st.spinner(f"🚀 Initializing AI Engine on {device_str}..."):
            try:
                sam = get_sam_engine(ModelConfig.DEFAULT_MODEL)
            except PaintCoreError as e:
                st.error(f"AI Engine could not be initialized: {e}")
                st.stop()
    placeholder.empty()

    render_sidebar(session, device_str)

    if not session.has_image:
        st.info("Load an image to begin. Click a surface to paint it.")
        return

    controller = CanvasController(session, sam)
    try:
        with st.spinner("🚀 Analyzing image structure..."):
            run(controller.prepare())
    except PaintCoreError as e:
        st.error(f"Error analyzing image: {e}")
        st.stop()

    display = session.display_image()
    click = streamlit_image_coordinates(Image.fromarray(display[..., :3]),
                                        key=f"canvas_{st.session_state['render_id']}")
    if click is not None:
        click_tuple = (click["x"], click["y"])
        if click_tuple != st.session_state["last_click"]:
            st.session_state["last_click"] = click_tuple
            try:
                surface = run(controller.click(click["x"], click["y"], st.session_state["picked_color"]))
            except PaintCoreError as e:
                st.error(f"Failed to generate mask: {e}")
            else:
                if surface is None:
                    st.toast("No surface found at that point.")
                else:
                    st.toast(f"✨ Painted {surface.id}")
                st.session_state["render_id"] += 1
                st.rerun()

    with st.expander("Compare before / after"):
        image_comparison(img1=Image.fromarray(session.original_image[..., :3]),
                         img2=Image.fromarray(display[..., :3]),
                         label1="Original", label2="Painted")

    buf = io.BytesIO()
    Image.fromarray(display[..., :3]).save(buf, format="PNG")
    st.download_button("Download", data=buf.getvalue(), file_name="painted.png", mime="image/png")
    if st.session_state["last_click"]:
        x, y = st.session_state["last_click"]
        x = min(max(int(x), 0), session.width - 1)
        y = min(max(int(y), 0), session.height - 1)
        st.caption(f"Color at last click: {rgb_to_hex(session.current_image[y, x])}")


if __name__ == "__main__":
    main()
