"""
Shell command construction for the index-build and search stages.

Patterns and database paths are inserted verbatim, without shell quoting.
A pattern containing shell metacharacters is interpreted by the shell that
runs the search pipeline.
"""

from typing import List, Sequence


def database_directory(database_path: str) -> str:
    """Directory part of ``database_path``, keeping the trailing slash."""
    return database_path[: database_path.rfind("/") + 1]


class CommandBuilder:
    """Builds updatedb arguments and the locate | xargs ls | sed pipeline."""

    def __init__(self, switches: str = "-dilsb", prunepaths: Sequence[str] = ()):
        self.switches = switches
        self.prunepaths = list(prunepaths)

    def build_search_command(
        self, locate_exe: str, database_path: str, pattern: str
    ) -> str:
        """Pipeline listing every basename match with ls.

        The final sed stage only shortens the listed paths: it removes the
        database directory from each line and indents the line by two spaces.
        """
        directory = database_directory(database_path)
        return (
            f"{locate_exe} --basename --database={database_path} {pattern}"
            f" | xargs -r ls {self.switches}"
            f" | sed -e 's|{directory}||' -e 's|^|  |'"
        )

    def build_index_command(self, database_path: str) -> List[str]:
        """updatedb arguments indexing the database's own directory."""
        directory = database_directory(database_path)
        args = [f"--localpaths={directory}"]
        if self.prunepaths:
            pruned = " ".join(directory + entry for entry in self.prunepaths)
            args.append(f'--prunepaths="{pruned}"')
        args.append(f"--output={database_path}")
        return args

    def index_command_line(self, updatedb_exe: str, database_path: str) -> str:
        return " ".join([updatedb_exe] + self.build_index_command(database_path))
