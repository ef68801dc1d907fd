"""
Managers for handling environment variables of launched processes.
"""
import os
from typing import Dict, List, Optional
from dotenv import dotenv_values

class EnvironmentManager:
    """
    Merges environment variables from the host, env files, the image and
    explicit launch-time values.
    """
    def __init__(self, base_dir: str = "."):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to env files.
        """
        self.base_dir = base_dir

    def get_merged_environment(self,
                               image_env: Dict[str, str],
                               explicit_env: Optional[Dict[str, str]] = None,
                               env_files: Optional[List[str]] = None) -> Dict[str, str]:
        """
        Later sources override earlier ones: host, image ENV, env files (in
        order), explicit values.

        :param image_env: ENV values baked into the image.
        :param explicit_env: Values given at launch time.
        :param env_files: Paths to .env files.
        :return: The merged environment.
        :raises FileNotFoundError: If an env file does not exist.
        """
        merged_env = os.environ.copy()
        merged_env.update(image_env)

        for env_file in env_files or []:
            file_path = os.path.join(self.base_dir, env_file)
            if not os.path.exists(file_path):
                raise FileNotFoundError(f"Env file {file_path} not found")
            merged_env.update({k: v for k, v in dotenv_values(file_path).items() if v is not None})

        merged_env.update(explicit_env or {})
        return merged_env
