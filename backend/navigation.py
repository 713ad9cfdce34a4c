from typing import List, NamedTuple

from models import ROOT_ID, ROOT_NAME


class Crumb(NamedTuple):
    id: str
    name: str


ROOT_CRUMB = Crumb(ROOT_ID, ROOT_NAME)


class Breadcrumbs:
    """Ancestor trail from the root to the folder currently on screen.

    Pure client state: it is never written to the node database and a fresh
    session always starts at the root.
    """

    def __init__(self, trail=None):
        self.trail: List[Crumb] = list(trail) if trail else [ROOT_CRUMB]

    @property
    def current(self) -> Crumb:
        return self.trail[-1]

    def navigate_to(self, folder) -> List[Crumb]:
        """Open ``folder`` (anything with ``id`` and ``name``) and return the new trail."""
        if folder.id == ROOT_ID:
            self.trail = [ROOT_CRUMB]
            return self.trail

        for index, crumb in enumerate(self.trail):
            if crumb.id == folder.id:
                # Going back to a known breadcrumb
                self.trail = self.trail[: index + 1]
                return self.trail

        self.trail = self.trail + [Crumb(folder.id, folder.name)]
        return self.trail

    def forget(self, node_id: str) -> bool:
        """Drop ``node_id`` and everything after it, e.g. once that folder is deleted."""
        for index, crumb in enumerate(self.trail):
            if index and crumb.id == node_id:
                self.trail = self.trail[:index]
                return True
        return False

    def to_list(self):
        return [{"id": crumb.id, "name": crumb.name} for crumb in self.trail]

    @classmethod
    def from_list(cls, data) -> "Breadcrumbs":
        try:
            trail = [Crumb(str(item["id"]), str(item["name"])) for item in data or []]
        except (KeyError, TypeError):
            trail = []
        if not trail or trail[0].id != ROOT_ID:
            trail = [ROOT_CRUMB]
        return cls(trail)

    def __len__(self):
        return len(self.trail)
