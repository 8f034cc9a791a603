"""geoexcel — point layers from spreadsheets, with legend/rule filtering,
spatial selection, bulk editing and enrichment.
"""

from geoexcel.workspace import Workspace, WorkspaceView

__all__ = ["Workspace", "WorkspaceView"]
