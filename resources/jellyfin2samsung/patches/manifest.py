"""
Manifest privilege and CSP step.

Rewrites the package's config.xml so the TV starts the local bridge service
alongside the app, grants the network privileges it needs, and allows the
page to talk to the bridge origin. Also writes the bridge itself to
service/service.js.
"""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path

from . import html_utils
from .context import PatchContext


WIDGETS_NS = "http://www.w3.org/ns/widgets"
TIZEN_NS = "http://tizen.org/ns/widgets"

SERVICE_NAME = "ytresolver"
SERVICE_SOURCE = "service/service.js"
SERVICE_ASSET = Path(__file__).parent / "assets" / "service.js"
DEFAULT_PACKAGE_ID = "AprZAARz4r"

REQUIRED_PRIVILEGES = (
    "http://tizen.org/privilege/internet",
    "http://tizen.org/privilege/network.public",
    "http://tizen.org/privilege/content.read",
)

ET.register_namespace("", WIDGETS_NS)
ET.register_namespace("tizen", TIZEN_NS)

logger = logging.getLogger(__name__)


def _w(tag: str) -> str:
    return f"{{{WIDGETS_NS}}}{tag}"


def _t(tag: str) -> str:
    return f"{{{TIZEN_NS}}}{tag}"


def build_content_security_policy(bridge_port: int) -> str:
    bridge = f"http://localhost:{bridge_port}"
    return (
        "default-src * 'unsafe-inline' 'unsafe-eval' data: blob:; "
        f"script-src * 'unsafe-inline' 'unsafe-eval' {bridge} https://www.youtube.com; "
        f"frame-src * {bridge} https://www.youtube.com; "
        f"connect-src * {bridge};"
    )


def build_service_script(bridge_port: int) -> str:
    return SERVICE_ASSET.read_text(encoding="utf-8").replace("{{PORT}}", str(bridge_port))


def _is_bridge_service(element: ET.Element) -> bool:
    if element.get("id", "").endswith("." + SERVICE_NAME):
        return True
    name = element.find(_t("name"))
    return name is not None and (name.text or "").strip() == SERVICE_NAME


def patch_manifest_root(root: ET.Element, bridge_port: int) -> None:
    """Apply the manifest changes to a parsed config.xml root in place."""
    removable = {_w("access"), _w("allow-navigation"), _t("allow-navigation"),
                 _t("content-security-policy"), _t("allow-mixed-content")}
    for child in list(root):
        if child.tag in removable or (child.tag == _t("service") and _is_bridge_service(child)):
            root.remove(child)

    declared = {p.get("name") for p in root.iter(_t("privilege"))}
    for privilege in REQUIRED_PRIVILEGES:
        if privilege not in declared:
            ET.SubElement(root, _t("privilege"), {"name": privilege})

    ET.SubElement(root, _w("access"), {"origin": "*", "subdomains": "true"})
    ET.SubElement(root, _w("allow-navigation"), {"href": "*"})
    ET.SubElement(root, _t("allow-navigation")).text = "*"

    application = root.find(_t("application"))
    package_id = application.get("package") if application is not None else None
    package_id = package_id or DEFAULT_PACKAGE_ID

    service = ET.SubElement(root, _t("service"), {"id": f"{package_id}.{SERVICE_NAME}", "type": "service"})
    ET.SubElement(service, _t("content"), {"src": SERVICE_SOURCE})
    ET.SubElement(service, _t("name")).text = SERVICE_NAME

    ET.SubElement(root, _t("content-security-policy")).text = build_content_security_policy(bridge_port)
    ET.SubElement(root, _t("allow-mixed-content")).text = "true"


def patch_manifest(context: PatchContext) -> bool:
    """
    Patch config.xml and write the bridge service.

    Returns:
        True if either file changed
    """
    manifest_path = context.workspace.manifest_path
    if not manifest_path.exists():
        logger.warning("config.xml not found, skipping manifest patch")
        return False

    bridge_port = context.settings.bridge_port
    original = manifest_path.read_bytes()

    parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
    root = ET.fromstring(original, parser=parser)
    patch_manifest_root(root, bridge_port)
    ET.indent(root)
    updated = ET.tostring(root, encoding="utf-8", xml_declaration=True)

    changed = False
    if updated != original:
        manifest_path.write_bytes(updated)
        changed = True

    service_path = context.workspace.root / SERVICE_SOURCE
    service_script = build_service_script(bridge_port)
    if not service_path.exists() or html_utils.read_text(service_path) != service_script:
        service_path.parent.mkdir(parents=True, exist_ok=True)
        html_utils.write_text(service_path, service_script)
        changed = True

    if changed:
        logger.info(f"Manifest declares {SERVICE_NAME} bridge on port {bridge_port}")
    return changed
