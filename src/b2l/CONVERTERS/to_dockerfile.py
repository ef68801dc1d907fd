"""
Converter rendering a BuildManifest back to a Dockerfile-style manifest.
"""
import json
import os
import shlex
from jinja2 import Environment
from ..MODELS.manifest import BuildManifest
from ..PARSERS.manifest_parser import ARTIFACT_LABEL, artifact_from_command

DOCKERFILE_TEMPLATE = """\
FROM {{ base_image }}
{% if volumes %}VOLUME {{ volumes | json }}
{% endif %}{% if working_dir != '/' %}WORKDIR {{ working_dir }}
{% endif %}{% for k, v in env.items() %}ENV {{ k }}={{ v | shquote }}
{% endfor %}{% for k, v in labels.items() %}LABEL {{ k }}={{ v | shquote }}
{% endfor %}{% for copy in copies %}COPY {{ copy.sources | join(' ') }} {{ copy.destination }}
{% endfor %}{% if system_packages %}RUN apt-get update && apt-get install -y {{ system_packages | join(' ') }}
{% endif %}RUN {{ build_script }}
{% if entrypoint %}ENTRYPOINT {{ entrypoint | json }}
{% endif %}{% if cmd %}CMD {{ cmd | json }}
{% endif %}"""


class DockerfileConverter:
    """
    Renders a manifest (typically the default one, after configuration
    overrides) as manifest text that ManifestParser reads back.
    """

    def __init__(self, manifest: BuildManifest):
        self.manifest = manifest
        environment = Environment(keep_trailing_newline=True)
        environment.filters["json"] = json.dumps
        environment.filters["shquote"] = shlex.quote
        self.template = environment.from_string(DOCKERFILE_TEMPLATE)

    def render(self) -> str:
        manifest = self.manifest
        labels = dict(manifest.labels)
        if artifact_from_command(manifest.default_command()) != manifest.artifact_path:
            labels[ARTIFACT_LABEL] = manifest.artifact_path
        return self.template.render(
            base_image=manifest.base_image,
            volumes=manifest.volumes,
            working_dir=manifest.working_dir,
            env=manifest.env,
            labels=labels,
            copies=manifest.copies,
            system_packages=manifest.system_packages,
            build_script=self._build_script(),
            entrypoint=manifest.entrypoint,
            cmd=manifest.cmd,
        )

    def _build_script(self) -> str:
        command = self.manifest.build_command
        # chained steps are stored as a shell script
        if command[:2] == ["/bin/sh", "-c"] and len(command) == 3:
            return command[2]
        return shlex.join(command)

    def convert(self, output_dir: str = "dist", filename: str = "Dockerfile") -> str:
        """
        Writes the manifest to ``output_dir/filename``.

        :return: The path written.
        """
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, filename)
        with open(path, "w") as f:
            f.write(self.render())
        print(f"Manifest written to {path}")
        return path
