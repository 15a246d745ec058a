"""Test helpers for kapply tools."""

from pathlib import Path

INVENTORY_TEMPLATE = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: inventory
  labels:
    cli-utils.sigs.k8s.io/inventory-id: podinfo
"""


def write_package(path: Path, names: list[str]) -> Path:
    """Write a package of ConfigMaps along with its inventory template."""
    path.mkdir(parents=True, exist_ok=True)
    (path / "inventory-template.yaml").write_text(INVENTORY_TEMPLATE)
    for name in names:
        (path / f"{name}.yaml").write_text(
            "\n".join(
                [
                    "apiVersion: v1",
                    "kind: ConfigMap",
                    "metadata:",
                    f"  name: {name}",
                    "data:",
                    f"  key: {name}",
                    "",
                ]
            )
        )
    return path
