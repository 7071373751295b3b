from taskshell.cli import main

main()
