"""
Converter generating a systemd unit that launches an image's default command.
"""
import json
import os
import shlex
import shutil
from typing import List, Tuple
from jinja2 import Template
from ..MANAGERS.volume_manager import VolumeManager
from ..MODELS.container_image import ImageRecord
from ..UTILS.paths import container_to_host

SYSTEMD_TEMPLATE = """
[Unit]
Description=B2L image {{ name }} ({{ id }})
After=network.target

[Service]
Type=simple
WorkingDirectory={{ working_dir }}
ExecStart={{ command }}
{% for assignment in environment %}
Environment={{ assignment }}
{% endfor %}
{% for target, source in volumes %}
# Volume {{ target }} -> {{ source }}
{% endfor %}
Restart=no

[Install]
WantedBy=multi-user.target
"""


def _systemd_escape(value: str) -> str:
    # specifiers are expanded in every unit setting
    return value.replace("%", "%%")


def _quote_assignment(key: str, value: str) -> str:
    text = f"{key}={value}".replace("\\", "\\\\").replace('"', '\\"')
    return _systemd_escape(f'"{text}"')


class SystemdConverter:
    """
    Converts a built image into a systemd unit file.

    The unit does not run from the published image: each unit gets its own
    copy of the rootfs under ``<home>/units/<unit>``, and every declared
    mount point is bound to the named volume ``<unit>-<index>``. No restart
    policy is implied.
    """

    def __init__(self, image: ImageRecord, home: str):
        """
        Initializes the systemd converter.

        :param image: The image to launch.
        :param home: Orchestrator home holding unit copies and volumes.
        """
        self.image = image
        self.home = os.path.abspath(home)
        self.volume_manager = VolumeManager(self.home)
        self.template = Template(SYSTEMD_TEMPLATE, trim_blocks=True)

    @property
    def unit_stem(self) -> str:
        return f"b2l-{self.image.name.replace(':', '-').replace('/', '-')}"

    def _exec_start(self, rootfs: str, working_dir: str) -> str:
        argv = list(self.image.default_command())
        if argv:
            executable = argv[0]
            if executable.startswith("/"):
                argv[0] = container_to_host(rootfs, executable)
            elif os.sep in executable:
                # systemd requires an absolute executable path
                argv[0] = os.path.normpath(os.path.join(working_dir, executable))
        return _systemd_escape(" ".join(shlex.quote(a) for a in argv))

    def _prepare_rootfs(self) -> Tuple[str, List[Tuple[str, str]]]:
        """
        Copies the image rootfs for the unit and binds its mount points.
        Volumes survive regeneration; the rootfs copy does not.
        """
        unit_dir = os.path.join(self.home, "units", self.unit_stem)
        rootfs = os.path.join(unit_dir, "rootfs")
        if os.path.exists(rootfs):
            shutil.rmtree(rootfs)
        os.makedirs(unit_dir, exist_ok=True)
        shutil.copytree(self.image.rootfs_path, rootfs, symlinks=True)

        volumes = []
        for index, mount_point in enumerate(self.image.volumes):
            source = self.volume_manager.attach(f"{self.unit_stem}-{index}", mount_point,
                                                rootfs, self.image.working_dir)
            volumes.append((mount_point, source))

        with open(os.path.join(unit_dir, "unit.json"), "w") as f:
            json.dump({"image_id": self.image.id,
                       "volumes": [f"{self.unit_stem}-{i}" for i in range(len(volumes))]}, f, indent=2)
        return rootfs, volumes

    def convert(self, output_dir: str = "systemd") -> str:
        """
        Generates ``b2l-<name>.service``.

        :param output_dir: The directory where the unit file is created.
        :return: The path of the unit file.
        :raises VolumeError: If a declared mount point cannot be bound.
        """
        os.makedirs(output_dir, exist_ok=True)
        image = self.image
        rootfs, volumes = self._prepare_rootfs()
        working_dir = container_to_host(rootfs, image.working_dir)

        content = self.template.render(
            name=image.name,
            id=image.id,
            working_dir=_systemd_escape(working_dir),
            command=self._exec_start(rootfs, working_dir),
            environment=[_quote_assignment(k, v) for k, v in image.env.items()],
            volumes=volumes,
        )

        path = os.path.join(output_dir, f"{self.unit_stem}.service")
        with open(path, "w") as f:
            f.write(content)

        print(f"Systemd unit generated at {path}")
        return path


def unit_volumes(home: str) -> List[str]:
    """Named volumes bound by generated units."""
    names = []
    units_dir = os.path.join(os.path.abspath(home), "units")
    if not os.path.isdir(units_dir):
        return names
    for unit in sorted(os.listdir(units_dir)):
        meta = os.path.join(units_dir, unit, "unit.json")
        if os.path.exists(meta):
            with open(meta, "r") as f:
                names.extend(json.load(f).get("volumes", []))
    return names
