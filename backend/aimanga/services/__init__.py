"""业务服务层：网关、缓存、供应商、编辑编排与项目管理。"""
