"""taskshell — attach an interactive terminal to a running task.

The local terminal is bridged to a remote shell over a websocket, speaking
whichever of the two shell protocol versions the task's worker advertises.
"""

__version__ = "0.1.0"
