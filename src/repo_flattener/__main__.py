from repo_flattener.cli import main

raise SystemExit(main())
